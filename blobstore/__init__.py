"""Blob store server and storage backends."""
