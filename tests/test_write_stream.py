"""Tests for S3WriteStream."""

import io

import pytest
from botocore.exceptions import ClientError

from bucketfs import CancellationToken, MemoryS3Client, OperationCancelledError, S3WriteStream
from bucketfs.gateway import ObjectGateway

BUCKET = "test-bucket"
MIB = 1024 * 1024


def _stream(client, key="out.bin", part_size=10, **kwargs):
    gateway = ObjectGateway(BUCKET, lambda: client, {"StorageClass": "STANDARD"})
    return S3WriteStream(gateway, key, part_size=part_size, **kwargs)


class FailingPartClient(MemoryS3Client):
    """Client rejecting one part number."""

    def __init__(self, fail_part, **kwargs):
        super().__init__(**kwargs)
        self.fail_part = fail_part

    def upload_part(self, **kwargs):
        if kwargs["PartNumber"] == self.fail_part:
            self._record("upload_part", {**kwargs, "Body": b""})
            raise ClientError(
                {"Error": {"Code": "InternalError", "Message": "boom"}}, "UploadPart"
            )
        return super().upload_part(**kwargs)


class TestSingleVersusMultipart:
    """Test when a write becomes a multipart upload."""

    @pytest.mark.parametrize(
        "size, puts, parts",
        [
            (0, 1, 0),
            (5, 1, 0),
            (10, 1, 0),
            (19, 1, 0),
            (20, 0, 2),
            (21, 0, 3),
            (35, 0, 4),
        ],
    )
    def test_call_counts(self, size, puts, parts):
        """Below two parts one PUT; from two parts ceil(N / part) parts."""
        client = MemoryS3Client()
        data = bytes(i % 251 for i in range(size))

        with _stream(client) as stream:
            stream.write(data)

        assert client.count("put_object") == puts
        assert client.count("upload_part") == parts
        assert client.count("create_multipart_upload") == (1 if parts else 0)
        assert client.buckets[BUCKET]["out.bin"].data == data

    def test_many_small_writes(self):
        """Part boundaries do not depend on how writes are split."""
        client = MemoryS3Client()
        data = bytes(range(47))

        with _stream(client) as stream:
            for i in range(0, len(data), 3):
                stream.write(data[i : i + 3])

        assert client.buckets[BUCKET]["out.bin"].data == data
        sizes = [len(kw["Body"]) for op, kw in client.calls if op == "upload_part"]
        assert sizes == [10, 10, 10, 10, 7]

    def test_twelve_mib_with_five_mib_parts(self):
        """12 MiB becomes parts 1, 2, 3 of 5, 5 and 2 MiB."""
        client = MemoryS3Client(min_part_size=5 * MIB)
        data = b"x" * (12 * MIB)

        with _stream(client, part_size=5 * MIB) as stream:
            stream.write(data)

        uploads = [kw for op, kw in client.calls if op == "upload_part"]
        assert [kw["PartNumber"] for kw in uploads] == [1, 2, 3]
        assert [len(kw["Body"]) for kw in uploads] == [5 * MIB, 5 * MIB, 2 * MIB]
        complete = [kw for op, kw in client.calls if op == "complete_multipart_upload"]
        assert len(complete) == 1
        assert [p["PartNumber"] for p in complete[0]["MultipartUpload"]["Parts"]] == [1, 2, 3]
        assert client.buckets[BUCKET]["out.bin"].data == data

    def test_ten_mib_single_put(self):
        """Just under two parts stays a single PUT."""
        client = MemoryS3Client()

        with _stream(client, part_size=5 * MIB) as stream:
            stream.write(b"y" * (10 * MIB - 1))

        assert client.count("put_object") == 1
        assert client.count("create_multipart_upload") == 0

    def test_write_args_on_every_write_type(self):
        """Storage class reaches single PUTs and multipart initiation."""
        client = MemoryS3Client()
        with _stream(client, key="small") as stream:
            stream.write(b"abc")
        with _stream(client, key="large") as stream:
            stream.write(b"z" * 30)

        assert client.buckets[BUCKET]["small"].extra == {"StorageClass": "STANDARD"}
        assert client.buckets[BUCKET]["large"].extra == {"StorageClass": "STANDARD"}


class TestFailures:
    """Test that failures abort multipart uploads."""

    def test_part_failure_aborts(self):
        """A rejected part aborts the upload and surfaces the error."""
        client = FailingPartClient(fail_part=2)
        stream = _stream(client)
        stream.write(b"a" * 35)

        with pytest.raises(ClientError):
            stream.close()

        assert client.count("abort_multipart_upload") == 1
        assert client.uploads == {}
        assert "out.bin" not in client.buckets.get(BUCKET, {})

    def test_tail_failure_aborts(self):
        """A failure uploading the last part aborts too."""
        client = FailingPartClient(fail_part=3)
        stream = _stream(client)
        stream.write(b"a" * 25)

        with pytest.raises(ClientError):
            stream.close()

        assert client.uploads == {}

    def test_cancel_before_close_single(self):
        """Cancellation stops a single PUT."""
        client = MemoryS3Client()
        token = CancellationToken()
        stream = _stream(client, cancel_token=token)
        stream.write(b"abc")
        token.cancel()

        with pytest.raises(OperationCancelledError):
            stream.close()

        assert client.count("put_object") == 0

    def test_cancel_multipart_aborts(self):
        """Cancelling a multipart write leaves no open upload."""
        client = MemoryS3Client()
        token = CancellationToken()
        stream = _stream(client, cancel_token=token)
        stream.write(b"a" * 25)
        token.cancel()

        with pytest.raises(OperationCancelledError):
            stream.close()

        assert client.uploads == {}
        assert client.count("complete_multipart_upload") == 0


class TestStreamSurface:
    """Test the stream capability surface."""

    def test_capabilities(self):
        """Write streams are write-only and forward-only."""
        stream = _stream(MemoryS3Client())
        assert stream.writable() is True
        assert stream.readable() is False
        assert stream.seekable() is False
        with pytest.raises(io.UnsupportedOperation):
            stream.read()
        with pytest.raises(io.UnsupportedOperation):
            stream.seek(0)
        stream.close()

    def test_tell_counts_bytes(self):
        """tell() reports the number of bytes written."""
        stream = _stream(MemoryS3Client())
        stream.write(b"abc")
        stream.write(bytearray(b"de"))
        assert stream.tell() == 5
        stream.close()

    def test_rejects_text(self):
        """Writing str raises TypeError."""
        stream = _stream(MemoryS3Client())
        with pytest.raises(TypeError):
            stream.write("text")
        stream.close()

    def test_write_after_close(self):
        """Writing to a closed stream raises ValueError."""
        stream = _stream(MemoryS3Client())
        stream.close()
        assert stream.closed is True
        with pytest.raises(ValueError):
            stream.write(b"late")

    def test_close_twice(self):
        """Closing again does not upload again."""
        client = MemoryS3Client()
        stream = _stream(client)
        stream.write(b"abc")
        stream.close()
        stream.close()
        assert client.count("put_object") == 1


class TestCleanupDoesNotMaskFailure:
    """Test that abort failures leave the original error in place."""

    def test_abort_error_swallowed(self):
        """A failing abort does not replace the part upload error."""

        class BrokenAbortClient(FailingPartClient):
            def abort_multipart_upload(self, **kwargs):
                raise RuntimeError("abort failed")

        client = BrokenAbortClient(fail_part=2)
        stream = _stream(client)
        stream.write(b"a" * 35)

        with pytest.raises(ClientError):
            stream.close()
