"""Unit tests for receiver disk storage."""

import pytest

from common.checksum import compute_checksum
from receiver.exceptions import InvalidChunkError
from receiver.storage import ChunkStore, SessionMeta, StoredFile


def make_meta(file_id='file-1', total_chunks=3):
    return SessionMeta(
        file_id=file_id,
        file_name='notes.txt',
        total_size=5,
        mime_type='text/plain',
        chunk_size=2,
        total_chunks=total_chunks,
        file_hash='0' * 64,
    )


def test_session_round_trip(chunk_store):
    """Test session metadata is persisted per file_id."""
    assert chunk_store.load_session('file-1') is None

    chunk_store.save_session(make_meta())

    assert chunk_store.load_session('file-1') == make_meta()


def test_write_chunk_overwrites(chunk_store):
    """Test writing the same chunk twice keeps one copy with the latest bytes."""
    chunk_store.write_chunk('file-1', 0, b'old')
    chunk_store.write_chunk('file-1', 0, b'new')

    assert chunk_store.get_chunk_path('file-1', 0).read_bytes() == b'new'
    assert chunk_store.uploaded_chunks('file-1') == [0]
    assert not [p for p in chunk_store.session_dir('file-1').iterdir() if p.name.endswith('.tmp')]


def test_uploaded_chunks_sorted(chunk_store):
    chunk_store.save_session(make_meta())
    for index in (2, 0, 10):
        chunk_store.write_chunk('file-1', index, b'x')

    assert chunk_store.uploaded_chunks('file-1') == [0, 2, 10]
    assert chunk_store.uploaded_chunks('unknown') == []


@pytest.mark.parametrize("file_id", ['../escape', '', 'a/b', '.hidden'])
def test_invalid_file_id_rejected(chunk_store, file_id):
    """Test file ids cannot address paths outside the session directory."""
    with pytest.raises(InvalidChunkError):
        chunk_store.session_dir(file_id)


def test_invalid_file_hash_rejected(chunk_store):
    with pytest.raises(InvalidChunkError):
        chunk_store.has_file('../../etc/passwd')


def test_assemble_concatenates_in_order(chunk_store):
    """Test assembly writes chunks in index order regardless of arrival order."""
    chunk_store.write_chunk('file-1', 2, b'e')
    chunk_store.write_chunk('file-1', 0, b'ab')
    chunk_store.write_chunk('file-1', 1, b'cd')

    tmp_path = chunk_store.assemble('file-1', 3)

    assert tmp_path.read_bytes() == b'abcde'


def test_assemble_missing_chunk_raises(chunk_store):
    chunk_store.write_chunk('file-1', 0, b'ab')

    with pytest.raises(FileNotFoundError):
        chunk_store.assemble('file-1', 2)
    assert not list(chunk_store.files_dir.glob('*.tmp'))


def test_store_file_and_metadata(chunk_store):
    """Test an assembled file is moved into the content-addressed store."""
    file_hash = compute_checksum(b'abcde')
    chunk_store.write_chunk('file-1', 0, b'abcde')
    tmp_path = chunk_store.assemble('file-1', 1)
    stored = StoredFile(file_hash=file_hash, file_name='notes.txt', mime_type='text/plain', size=5)

    dest = chunk_store.store_file(tmp_path, stored)

    assert dest.read_bytes() == b'abcde'
    assert not tmp_path.exists()
    assert chunk_store.has_file(file_hash)
    assert chunk_store.load_file_meta(file_hash) == stored


def test_store_existing_file_keeps_copy(chunk_store, tmp_path):
    file_hash = compute_checksum(b'abcde')
    stored = StoredFile(file_hash=file_hash, file_name='a.txt', mime_type='text/plain', size=5)
    first = tmp_path / 'first.tmp'
    first.write_bytes(b'abcde')
    second = tmp_path / 'second.tmp'
    second.write_bytes(b'abcde')

    chunk_store.store_file(first, stored)
    chunk_store.store_file(second, StoredFile(file_hash, 'b.txt', 'text/plain', 5))

    assert not second.exists()
    assert chunk_store.load_file_meta(file_hash).file_name == 'a.txt'


def test_delete_session(chunk_store):
    chunk_store.save_session(make_meta())
    chunk_store.write_chunk('file-1', 0, b'ab')

    assert chunk_store.delete_session('file-1') is True
    assert chunk_store.load_session('file-1') is None
    assert chunk_store.delete_session('file-1') is False


def test_store_rooted_at_given_path(tmp_path):
    store = ChunkStore(tmp_path / 'root')
    store.ensure_directories()

    assert (tmp_path / 'root' / 'sessions').is_dir()
    assert (tmp_path / 'root' / 'files').is_dir()
