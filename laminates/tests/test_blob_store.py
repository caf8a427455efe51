"""
Tests for the S3 blob store with a mocked boto3 client
"""
import asyncio
import io
import threading
from unittest.mock import Mock, patch

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from laminates.core.config import Settings
from laminates.core.errors import StorageFailedError
from laminates.services.blob_store import BlobDeletionReport, S3BlobStore, build_key

SETTINGS = Settings(aws_bucket_name="test-bucket", aws_region="ap-south-1")


def _client_error(code, operation="DeleteObject"):
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class TestBuildKey:

    def test_key_layout(self):
        key = build_key("q-1/items", ".PNG")
        assert key.startswith("quotations/q-1/items/")
        assert key.endswith(".png")

    def test_keys_are_unique(self):
        assert build_key("q-1", "pdf") != build_key("q-1", "pdf")


class TestS3BlobStore:

    def setup_method(self):
        self.client = Mock()
        self.store = S3BlobStore(SETTINGS, client=self.client)

    @pytest.mark.asyncio
    async def test_put_uploads_public_object(self):
        path = await self.store.put(b"%PDF-1.4", "application/pdf", "q-1", "pdf")

        assert path.startswith("quotations/q-1/")
        self.client.put_object.assert_called_once_with(
            Bucket="test-bucket", Key=path, Body=b"%PDF-1.4", ContentType="application/pdf", ACL="public-read",
        )

    @pytest.mark.asyncio
    async def test_put_failure_raises_storage_error(self):
        self.client.put_object.side_effect = _client_error("AccessDenied", "PutObject")

        with pytest.raises(StorageFailedError) as exc_info:
            await self.store.put(b"data", "image/png", "q-1/items", "png")
        assert exc_info.value.details["operation"] == "put"

    @pytest.mark.asyncio
    async def test_get_reads_body(self):
        self.client.get_object.return_value = {"Body": io.BytesIO(b"image-bytes")}
        assert await self.store.get("quotations/q-1/a.png") == b"image-bytes"

    @pytest.mark.asyncio
    async def test_get_failure_raises_storage_error(self):
        self.client.get_object.side_effect = EndpointConnectionError(endpoint_url="https://s3")
        with pytest.raises(StorageFailedError):
            await self.store.get("quotations/q-1/a.png")

    @pytest.mark.asyncio
    async def test_delete_missing_key_is_success(self):
        self.client.delete_object.side_effect = _client_error("NoSuchKey")
        await self.store.delete("quotations/q-1/gone.png")

    @pytest.mark.asyncio
    async def test_delete_many_collects_failures(self):
        def delete_object(Bucket, Key):
            if Key.endswith("bad.png"):
                raise _client_error("AccessDenied")
            return {}

        self.client.delete_object.side_effect = delete_object

        report = await self.store.delete_many(["a.png", "bad.png", None, "b.pdf"])

        assert isinstance(report, BlobDeletionReport)
        assert report.deleted == ["a.png", "b.pdf"]
        assert [path for path, _ in report.failed] == ["bad.png"]
        assert report.ok is False

    @pytest.mark.asyncio
    async def test_cancelled_put_logs_key(self, caplog):
        release = threading.Event()
        self.client.put_object.side_effect = lambda **kwargs: release.wait(5)

        try:
            with caplog.at_level("WARNING", logger="laminates.services.blob_store"):
                with pytest.raises(asyncio.TimeoutError):
                    await asyncio.wait_for(self.store.put(b"%PDF-1.4", "application/pdf", "q-1", "pdf"), 0.05)
        finally:
            release.set()

        messages = [record.getMessage() for record in caplog.records]
        assert any("quotations/q-1/" in message and message.endswith("may be orphaned") for message in messages)

    def test_public_url(self):
        assert self.store.public_url("quotations/q-1/a.pdf") == (
            "https://test-bucket.s3.ap-south-1.amazonaws.com/quotations/q-1/a.pdf"
        )
        assert self.store.public_url(None) is None

    def test_default_client_uses_boto3(self):
        with patch("laminates.services.blob_store.boto3.client") as mock_client:
            S3BlobStore(SETTINGS)
        mock_client.assert_called_once()
        assert mock_client.call_args.args == ("s3",)
        assert mock_client.call_args.kwargs["region_name"] == "ap-south-1"


class TestDeletionReport:

    def test_log_failures_warns_per_path(self, caplog):
        report = BlobDeletionReport(deleted=["a"], failed=[("b", "denied"), ("c", "timeout")])

        with caplog.at_level("WARNING", logger="laminates.services.blob_store"):
            report.log_failures("quotation delete")

        messages = [record.getMessage() for record in caplog.records]
        assert len(messages) == 2
        assert "quotation delete" in messages[0]
        assert "b" in messages[0]
