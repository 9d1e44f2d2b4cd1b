#!/usr/bin/env python3
"""Provision AWS storage for a blob store server.

Creates an S3 bucket and an IAM role (with a matching EC2 instance profile)
allowed to access it, then points the server configuration in
``<where>/<domain>/serverconfig.json`` at the new bucket.

Usage:
  blobstore-setupstorage --domain example.com [--region us-east-1] my-bucket
  blobstore-setupstorage --domain example.com --clean my-bucket

Every flag also accepts a single dash (``-domain``, ``-clean``, ...).

If something goes wrong halfway, rerun with ``--clean`` and the same options;
it removes whatever the setup created, ignoring entities that do not exist.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Callable

import boto3

from blobstore.common.logging import setup_cli_logging
from blobstore.infra.storage import s3_client

logger = logging.getLogger("blobstore.setupstorage")

SERVER_CONFIG_FILE = "serverconfig.json"
S3_ACCESS_POLICY_ARN = "arn:aws:iam::aws:policy/AmazonS3FullAccess"
ROLE_DESCRIPTION = "Used for storing data from the blob store service"
ASSUME_ROLE_POLICY = {
    "Version": "2012-10-17",
    "Statement": [
        {
            "Action": "sts:AssumeRole",
            "Effect": "Allow",
            "Principal": {"Service": "ec2.amazonaws.com"},
        }
    ],
}
_CLEAN_NOT_FOUND_CODES = {"404", "NoSuchEntity", "NoSuchBucket", "NotFound"}


class SetupError(RuntimeError):
    """Raised when a provisioning step fails."""


def server_config_path(where: str | os.PathLike[str], domain: str) -> Path:
    return Path(where) / domain / SERVER_CONFIG_FILE


def read_server_config(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise SetupError(
            f"server configuration {path} not found; set up the domain first"
        )
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise SetupError(f"server configuration {path} is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise SetupError(f"server configuration {path} must be a JSON object")
    return payload


def write_server_config(path: Path, config: dict[str, Any]) -> None:
    path.write_text(json.dumps(config, indent=2, sort_keys=True) + "\n", encoding="utf-8")


def store_config_entries(bucket_name: str, region: str) -> list[str]:
    return [
        f"backend={s3_client.BACKEND_NAME}",
        f"{s3_client.DEFAULT_ACL_KEY}={s3_client.ACL.PUBLIC_READ.value}",
        f"{s3_client.BUCKET_NAME_KEY}={bucket_name}",
        f"{s3_client.REGION_KEY}={region}",
        f"{s3_client.PATH_STYLE_KEY}=false",
    ]


class StorageProvisioner:
    """Creates and removes the AWS entities backing a blob store server."""

    def __init__(self, session: Any) -> None:
        self._session = session

    def _iam(self) -> Any:
        return self._session.client("iam")

    def _s3(self, region: str) -> Any:
        return self._session.client("s3", region_name=region)

    def create_role(self, role_name: str) -> dict[str, Any]:
        response = self._iam().create_role(
            RoleName=role_name,
            Description=ROLE_DESCRIPTION,
            AssumeRolePolicyDocument=json.dumps(ASSUME_ROLE_POLICY),
        )
        return response["Role"]

    def create_instance_profile(self, role_name: str) -> None:
        iam = self._iam()
        iam.create_instance_profile(InstanceProfileName=role_name)
        iam.add_role_to_instance_profile(
            InstanceProfileName=role_name, RoleName=role_name
        )

    def create_bucket(self, bucket_name: str, region: str) -> None:
        params: dict[str, Any] = {"Bucket": bucket_name}
        if region != "us-east-1":
            params["CreateBucketConfiguration"] = {"LocationConstraint": region}
        self._s3(region).create_bucket(**params)

    def attach_role_policy(self, role_name: str) -> None:
        self._iam().attach_role_policy(
            RoleName=role_name, PolicyArn=S3_ACCESS_POLICY_ARN
        )

    def setup(self, *, role_name: str, bucket_name: str, region: str) -> None:
        steps: list[tuple[str, Callable[[], object]]] = [
            ("create role account", lambda: self.create_role(role_name)),
            ("create instance profile", lambda: self.create_instance_profile(role_name)),
            ("create S3 bucket", lambda: self.create_bucket(bucket_name, region)),
            ("attach role policy", lambda: self.attach_role_policy(role_name)),
        ]
        for description, step in steps:
            try:
                step()
            except Exception as exc:
                raise SetupError(f"unable to {description}: {exc}") from exc
            logger.info("%s: done", description)

    def clean(self, *, role_name: str, bucket_name: str, region: str) -> list[str]:
        """Best-effort removal of everything ``setup`` creates.

        Every step is attempted. Entities that do not exist are skipped;
        other failures are logged and returned.
        """
        logger.info("Cleaning up...")
        iam = self._iam()
        steps: list[tuple[str, Callable[[], object]]] = [
            (
                f"delete bucket {bucket_name}",
                lambda: self._s3(region).delete_bucket(Bucket=bucket_name),
            ),
            (
                f"remove role from instance profile {role_name}",
                lambda: iam.remove_role_from_instance_profile(
                    InstanceProfileName=role_name, RoleName=role_name
                ),
            ),
            (
                f"delete instance profile {role_name}",
                lambda: iam.delete_instance_profile(InstanceProfileName=role_name),
            ),
            (
                f"detach role policy from {role_name}",
                lambda: iam.detach_role_policy(
                    RoleName=role_name, PolicyArn=S3_ACCESS_POLICY_ARN
                ),
            ),
            (f"delete role {role_name}", lambda: iam.delete_role(RoleName=role_name)),
        ]
        failures: list[str] = []
        for description, step in steps:
            try:
                step()
            except Exception as exc:
                if s3_client.is_not_found(exc, _CLEAN_NOT_FOUND_CODES):
                    logger.debug("%s: not found, skipping", description)
                    continue
                logger.error("unable to %s: %s", description, exc)
                failures.append(f"{description}: {exc}")
        return failures


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="blobstore-setupstorage",
        description=(
            "Create an S3 bucket and an IAM role for accessing it, then update "
            "the server configuration to use that bucket."
        ),
    )
    parser.add_argument("bucket_name", help="name of the S3 bucket")
    parser.add_argument(
        "-where",
        "--where",
        default=str(Path.home() / "blobstore" / "deploy"),
        help="directory that stores private configuration files",
    )
    parser.add_argument(
        "-domain", "--domain", required=True, help="domain name of this installation"
    )
    parser.add_argument(
        "-region", "--region", default="us-east-1", help="region for the S3 bucket"
    )
    parser.add_argument(
        "-role-name",
        "--role-name",
        default="blobstorage",
        help="name for the IAM role used to access the S3 bucket",
    )
    parser.add_argument(
        "-clean",
        "--clean",
        action="store_true",
        help="delete all artifacts that would be created using these options",
    )
    return parser


def main(argv: list[str] | None = None, *, session: Any = None) -> int:
    setup_cli_logging("blobstore setupstorage")
    args = _build_parser().parse_args(argv)
    if not args.domain.strip():
        logger.error("the --domain flag must be provided")
        return 2

    if session is None:
        try:
            session = boto3.session.Session()
        except Exception as exc:
            logger.error("unable to create session: %s", exc)
            return 1
    provisioner = StorageProvisioner(session)

    if args.clean:
        failures = provisioner.clean(
            role_name=args.role_name, bucket_name=args.bucket_name, region=args.region
        )
        return 1 if failures else 0

    cfg_path = server_config_path(args.where, args.domain)
    try:
        config = read_server_config(cfg_path)
        provisioner.setup(
            role_name=args.role_name, bucket_name=args.bucket_name, region=args.region
        )
    except SetupError as exc:
        logger.error("%s", exc)
        return 1

    config["StoreConfig"] = store_config_entries(args.bucket_name, args.region)
    write_server_config(cfg_path, config)
    print(
        "You should now deploy the blobstore server and start it with "
        f"SERVER_CONFIG={cfg_path}.",
        file=sys.stderr,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
