import asyncio
import pytest
from uploader.client.batch import BatchCoordinator
from uploader.client.errors import ChunkModeConfirmationRequired, ErrorKind
from uploader.client.models import Strategy, TaskStatus
from uploader.client.upload_client import UploadClient, UploadOptions
from uploader.core.config import settings

MB = 1024 * 1024


def run_chunked(receiver, tasks, **kwargs):
    async def _run():
        async with receiver.client() as client:
            return await BatchCoordinator(client, chunk_size=4, **kwargs).run(tasks, Strategy.CHUNKED)
    return asyncio.run(_run())


def run_client(receiver, files, options=None, **kwargs):
    async def _run():
        async with UploadClient(receiver.client(), **kwargs) as client:
            return await client.run_batch(files, options)
    return asyncio.run(_run())


def test_quota_failure_skips_the_rest_of_the_batch(fake_receiver, make_task):
    """Test that a quota error at init stops the batch and skips the rest."""
    tasks = [make_task(f"file{i}.bin", 6) for i in range(1, 6)]
    fake_receiver.init_errors["file3.bin"] = (507, "STORAGE_QUOTA_EXCEEDED")

    result = run_chunked(fake_receiver, tasks)

    assert result.succeeded == tasks[:2]
    assert result.failed == [tasks[2]]
    assert result.skipped == tasks[3:]
    assert result.total == 5
    assert tasks[2].error.kind == ErrorKind.QUOTA_EXCEEDED
    for task in tasks[3:]:
        assert task.status == TaskStatus.SKIPPED
        assert task.error.code == "SKIPPED_QUOTA"
    assert fake_receiver.calls_of("init") == ["file1.bin", "file2.bin", "file3.bin"]


@pytest.mark.parametrize("failing", [1, 2, 4])
def test_quota_failure_on_first_chunk_halts_batch(fake_receiver, make_task, failing):
    """Test the counts when file k hits the quota on its first chunk."""
    tasks = [make_task(f"part{i}.bin", 6) for i in range(1, 5)]
    fake_receiver.chunk_errors[(f"part{failing}.bin", 0)] = (507, "STORAGE_QUOTA_EXCEEDED")

    result = run_chunked(fake_receiver, tasks)

    assert result.succeeded == tasks[:failing - 1]
    assert result.failed == [tasks[failing - 1]]
    assert result.skipped == tasks[failing:]
    assert len(fake_receiver.calls_of("init")) == failing
    assert fake_receiver.calls_of("chunk")[-1] == (f"part{failing}.bin", 0)
    assert all(task.error.code == "SKIPPED_QUOTA" for task in result.skipped)


def test_quota_failure_during_chunks_halts_batch(fake_receiver, make_task):
    """Test that a quota error on a later chunk also stops the batch."""
    tasks = [make_task("a.bin", 8), make_task("b.bin", 8)]
    fake_receiver.chunk_errors[("a.bin", 1)] = (507, "STORAGE_QUOTA_EXCEEDED")

    result = run_chunked(fake_receiver, tasks)

    assert result.failed == [tasks[0]]
    assert result.skipped == [tasks[1]]
    assert fake_receiver.calls_of("init") == ["a.bin"]


def test_generic_failure_continues_with_next_file(fake_receiver, make_task):
    """Test that type and completion errors only fail their own file."""
    tasks = [make_task("a.bin", 5), make_task("b.exe", 5), make_task("c.bin", 5)]
    fake_receiver.init_errors["b.exe"] = (415, "FILE_TYPE_NOT_ALLOWED")
    fake_receiver.complete_errors["c.bin"] = (500, "FILE_SYSTEM_ERROR")

    result = run_chunked(fake_receiver, tasks)

    assert result.succeeded == [tasks[0]]
    assert result.failed == [tasks[1], tasks[2]]
    assert result.skipped == []
    assert tasks[1].error.kind == ErrorKind.FILE_TYPE_REJECTED
    assert fake_receiver.calls_of("init") == ["a.bin", "b.exe", "c.bin"]


def test_halt_on_can_include_other_kinds(fake_receiver, make_task):
    """Test a halt policy that also stops on rejected file types."""
    tasks = [make_task("a.exe", 5), make_task("b.bin", 5)]
    fake_receiver.init_errors["a.exe"] = (415, "FILE_TYPE_NOT_ALLOWED")

    result = run_chunked(
        fake_receiver, tasks, halt_on={ErrorKind.QUOTA_EXCEEDED, ErrorKind.FILE_TYPE_REJECTED}
    )

    assert result.failed == [tasks[0]]
    assert result.skipped == [tasks[1]]
    assert tasks[1].error.code == "FILE_TYPE_NOT_ALLOWED"


def test_progress_is_reported_per_file(fake_receiver, make_task):
    """Test that progress callbacks carry each file's own id and totals."""
    tasks = [make_task("a.bin", 8), make_task("b.bin", 3)]
    progress = []

    async def _run():
        async with fake_receiver.client() as client:
            coordinator = BatchCoordinator(client, 4, on_progress=lambda *args: progress.append(args))
            return await coordinator.run(tasks, Strategy.CHUNKED)

    asyncio.run(_run())

    assert progress == [(tasks[0].id, 1, 2), (tasks[0].id, 2, 2), (tasks[1].id, 1, 1)]


def test_empty_batch_makes_no_requests(fake_receiver):
    """Test that an empty batch returns at once without any request."""
    result = run_client(fake_receiver, [])

    assert result.is_empty
    assert fake_receiver.calls == []


def test_oversized_file_needs_chunk_mode(fake_receiver, make_task):
    """Test that files over the threshold require chunk mode."""
    big = make_task("big.bin", 11 * MB)

    with pytest.raises(ChunkModeConfirmationRequired) as exc_info:
        run_client(fake_receiver, [make_task("small.txt", 1), big])

    assert exc_info.value.oversized == [big]
    assert fake_receiver.calls == []


def test_chunk_mode_uses_receiver_chunk_size(make_receiver, make_task):
    """Test that the chunk size from /upload/config is used."""
    receiver = make_receiver(chunk_size=3)
    task = make_task("a.bin", 7)

    result = run_client(receiver, [task], UploadOptions(chunk_mode=True))

    assert result.succeeded == [task]
    assert [len(data) for _, data in receiver.chunks["a.bin"]] == [3, 3, 1]


def test_chunk_size_falls_back_to_default(fake_receiver, make_task):
    """Test the default chunk size when the config endpoint is missing."""
    task = make_task("a.bin", 10)

    result = run_client(fake_receiver, [task], UploadOptions(chunk_mode=True))

    assert result.succeeded == [task]
    assert [len(data) for _, data in fake_receiver.chunks["a.bin"]] == [10]
    assert settings.DEFAULT_CHUNK_SIZE == 20 * MB


def test_invalid_chunk_size_falls_back_to_default(make_receiver):
    """Test the default chunk size when the receiver sends zero."""
    receiver = make_receiver(chunk_size=0)

    async def _run():
        async with UploadClient(receiver.client()) as client:
            return await client.chunk_size()

    assert asyncio.run(_run()) == settings.DEFAULT_CHUNK_SIZE


def test_chunk_size_is_fetched_once(make_receiver, make_task):
    """Test that the config is fetched once per client."""
    receiver = make_receiver(chunk_size=4)

    async def _run():
        async with UploadClient(receiver.client()) as client:
            options = UploadOptions(chunk_mode=True)
            await client.run_batch([make_task("a.bin", 5)], options)
            await client.run_batch([make_task("b.bin", 5)], options)

    asyncio.run(_run())

    assert len(receiver.calls_of("config")) == 1
    assert receiver.calls_of("complete") == ["a.bin", "b.bin"]


def test_paths_are_accepted_as_input(fake_receiver, make_task):
    """Test that plain paths are turned into tasks."""
    task = make_task("doc.txt", 2)
    fake_receiver.upload_body = {
        "success": True,
        "uploadedFiles": [{"originalName": task.path.name, "savedName": task.path.name, "size": 2}],
    }

    result = run_client(fake_receiver, [task.path])

    assert [t.path for t in result.succeeded] == [task.path]
    assert result.succeeded[0].strategy == Strategy.SIMPLE
