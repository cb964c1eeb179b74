"""Tests for directory emulation."""

import pytest

from bucketfs import BucketFS, CancellationToken, MemoryS3Client, OperationCancelledError, connect_fs

BUCKET = "test-bucket"


def _make_fs(client=None, **kwargs):
    client = client if client is not None else MemoryS3Client()
    return BucketFS(connect_fs(bucket=BUCKET, **kwargs), client=client)


def _names(items):
    return sorted((item.name, item.is_dir) for item in items)


class TestDirectoryExists:
    """Test directory existence."""

    def test_root_exists(self):
        """The root always exists."""
        fs = _make_fs(prefix="feeds")
        assert fs.directory_exists("") is True
        assert fs.directory_exists("/") is True

    def test_requires_marker(self):
        """A directory holding only files does not exist until created."""
        fs = _make_fs()
        fs.write("data/file.csv", b"x")

        assert fs.directory_exists("data") is False
        fs.create_directory("data")
        assert fs.directory_exists("data") is True

    def test_create_over_files(self):
        """Creating a directory that holds files marks it and its parent."""
        client = MemoryS3Client()
        fs = _make_fs(client)
        fs.write("a/b/file.txt", b"x")
        assert fs.directory_exists("a/b") is False

        fs.create_directory("a/b")

        assert fs.directory_exists("a/b") is True
        assert "a/" in client.buckets[BUCKET]

    def test_nonexistent(self):
        """Test non-existent directory."""
        assert _make_fs().directory_exists("nope") is False


class TestCreateDirectory:
    """Test create_directory()."""

    def test_creates_ancestors(self):
        """Every missing ancestor gets a marker."""
        client = MemoryS3Client()
        fs = _make_fs(client, prefix="p")

        fs.create_directory("a/b/c")

        assert fs.directory_exists("a") is True
        assert fs.directory_exists("a/b") is True
        assert fs.directory_exists("a/b/c") is True
        assert sorted(client.buckets[BUCKET]) == ["p/a/", "p/a/b/", "p/a/b/c/"]
        assert all(obj.data == b"" for obj in client.buckets[BUCKET].values())

    def test_existing_directory_is_noop(self):
        """Creating an existing directory writes nothing."""
        client = MemoryS3Client()
        fs = _make_fs(client)
        fs.create_directory("a/b")
        puts = client.count("put_object")

        fs.create_directory("a/b")

        assert client.count("put_object") == puts

    def test_existing_ancestors_kept(self):
        """Only the missing ancestors are written."""
        client = MemoryS3Client()
        fs = _make_fs(client)
        fs.create_directory("a")

        fs.create_directory("a/b/c")

        assert client.count("put_object") == 3


class TestDeleteDirectory:
    """Test delete_directory()."""

    def test_recursive_delete(self):
        """Recursive delete removes every object under the directory."""
        client = MemoryS3Client(page_size=2)
        fs = _make_fs(client)
        fs.create_directory("data")
        for i in range(5):
            fs.write(f"data/f{i}.txt", b"x")
        fs.write("data/sub/deep.txt", b"x")
        fs.write("keep.txt", b"x")

        fs.delete_directory("data", recursive=True)

        assert sorted(client.buckets[BUCKET]) == ["keep.txt"]
        assert fs.directory_exists("data") is False

    def test_sibling_prefix_untouched(self):
        """Deleting 'data' leaves 'database'."""
        client = MemoryS3Client()
        fs = _make_fs(client)
        fs.write("data/a.txt", b"x")
        fs.write("database/b.txt", b"x")

        fs.delete_directory("data", recursive=True)

        assert sorted(client.buckets[BUCKET]) == ["database/b.txt"]

    def test_non_recursive_is_noop(self):
        """Without recursive nothing is deleted."""
        client = MemoryS3Client()
        fs = _make_fs(client)
        fs.create_directory("data")
        fs.write("data/a.txt", b"x")

        fs.delete_directory("data")

        assert sorted(client.buckets[BUCKET]) == ["data/", "data/a.txt"]
        assert client.count("delete_objects") == 0

    def test_delete_empty_directory(self):
        """Deleting a directory with nothing under it succeeds."""
        _make_fs().delete_directory("nothing", recursive=True)

    def test_cancelled_delete(self):
        """A cancelled token stops before any deletion."""
        client = MemoryS3Client()
        fs = _make_fs(client)
        fs.write("data/a.txt", b"x")
        token = CancellationToken()
        token.cancel()

        with pytest.raises(OperationCancelledError):
            fs.delete_directory("data", recursive=True, cancel_token=token)
        assert fs.file_exists("data/a.txt") is True


class TestList:
    """Test list()."""

    def test_list_root(self):
        """Files and subdirectories are listed once each."""
        fs = _make_fs(prefix="feeds")
        fs.write("file1.txt", b"content1")
        fs.write("file2.txt", b"content2")
        fs.write("dir/file3.txt", b"content3")
        fs.write("dir/sub/file4.txt", b"content4")

        assert _names(fs.list()) == [
            ("dir", True),
            ("file1.txt", False),
            ("file2.txt", False),
        ]

    def test_list_subdirectory(self):
        """Listing is limited to immediate children."""
        fs = _make_fs()
        fs.write("data/file1.csv", b"a,b,c")
        fs.write("data/nested/file2.csv", b"x")
        fs.write("other/file3.txt", b"text")

        assert _names(fs.list("data")) == [("file1.csv", False), ("nested", True)]

    def test_list_skips_own_marker(self):
        """The directory's own marker is not a child."""
        fs = _make_fs()
        fs.create_directory("data/empty")

        assert list(fs.list("data/empty")) == []
        assert _names(fs.list("data")) == [("empty", True)]

    def test_list_sizes(self):
        """File entries carry sizes; directories do not."""
        fs = _make_fs()
        fs.write("a.bin", b"12345")
        fs.create_directory("d")

        items = {item.name: item for item in fs.list()}

        assert items["a.bin"].size == 5
        assert items["d"].size is None

    def test_list_across_pages(self):
        """Subdirectories seen on several pages are reported once."""
        client = MemoryS3Client(page_size=1)
        fs = _make_fs(client)
        fs.create_directory("d")
        fs.write("d/x.txt", b"x")
        fs.write("e.txt", b"x")

        assert _names(fs.list()) == [("d", True), ("e.txt", False)]
        assert client.count("list_objects_v2") >= 2

    def test_list_is_lazy(self):
        """No request is made until the listing is iterated."""
        client = MemoryS3Client()
        fs = _make_fs(client)

        items = fs.list()
        assert client.count("list_objects_v2") == 0
        assert list(items) == []
        assert client.count("list_objects_v2") == 1

    def test_list_decodes_legacy_names(self):
        """Keys with '!XX' escapes list under their decoded names."""
        client = MemoryS3Client()
        client.store(BUCKET, "feeds/my!20file.txt", b"x")
        fs = _make_fs(client, prefix="feeds")

        assert _names(fs.list()) == [("my file.txt", False)]

    def test_cancelled_list(self):
        """A cancelled token stops the listing."""
        fs = _make_fs()
        token = CancellationToken()
        token.cancel()

        with pytest.raises(OperationCancelledError):
            list(fs.list(cancel_token=token))
