"""Tests for ArchiveStore."""

import json
import pytest
from collections.abc import Iterator
from dataclasses import replace
from unittest.mock import patch

from curator_backup.backup.archive import ArchiveStore
from curator_backup.exceptions import ArchiveWriteFailed, EntityNotFoundError
from tests.utils import make_activity, make_curator, make_server, make_setting, make_task_report


@pytest.fixture
def archive(backup_config):
    return ArchiveStore(backup_config)


@pytest.mark.asyncio
async def test_put_creates_record(archive, backup_config):
    """Test archiving writes a record file and answers contains_key."""
    record = await archive.put("curators", make_curator("111", "A", id=3))

    assert record.entity_type == "curators"
    assert record.natural_key == "111"
    assert record.reason == "deleted-curator"
    assert record.entity["id"] == 3
    assert archive.contains_key("curators", "111")
    assert not archive.contains_key("servers", "111")

    files = list(archive.archive_dir.glob("*.json"))
    assert len(files) == 1
    stored = json.loads(files[0].read_text())
    assert stored["naturalKey"] == "111"
    assert stored["reason"] == "deleted-curator"


@pytest.mark.asyncio
async def test_server_reason(archive):
    record = await archive.put("servers", make_server("900", "Main"))
    assert record.reason == "deleted-server"


@pytest.mark.asyncio
async def test_put_latest_deletion_wins(archive):
    """Test re-archiving a key overwrites instead of duplicating."""
    await archive.put("curators", make_curator("111", "A"))
    await archive.put("curators", make_curator("222", "B"))
    await archive.put("curators", make_curator("111", "A2"))

    records = list(archive.get_all())
    assert len(archive) == 2
    assert [r.natural_key for r in records] == ["222", "111"]
    assert archive.get("curators", "111").entity["name"] == "A2"
    assert len(list(archive.archive_dir.glob("*.json"))) == 2


@pytest.mark.asyncio
async def test_put_first_policy_keeps_original(backup_config):
    archive = ArchiveStore(replace(backup_config, archive_policy="first"))
    first = await archive.put("curators", make_curator("111", "A"))
    second = await archive.put("curators", make_curator("111", "A2"))

    assert second == first
    assert archive.get("curators", "111").entity["name"] == "A"


@pytest.mark.asyncio
async def test_get_all_is_lazy_and_restartable(archive):
    """Test each get_all() call is a fresh pass over current state."""
    await archive.put("curators", make_curator("111", "A"))

    records = archive.get_all()
    assert isinstance(records, Iterator)
    assert [r.natural_key for r in records] == ["111"]
    assert list(records) == []

    await archive.put("servers", make_server("900", "Main"))
    assert [r.natural_key for r in archive.get_all()] == ["111", "900"]


@pytest.mark.asyncio
async def test_records_survive_restart(archive, backup_config):
    """Test a new store over the same directory sees the same records in order."""
    await archive.put("curators", make_curator("111", "A"))
    await archive.put("servers", make_server("900", "Main"))
    await archive.put("curators", make_curator("222", "B"))

    reopened = ArchiveStore(backup_config)

    assert [r.natural_key for r in reopened.get_all()] == ["111", "900", "222"]
    assert reopened.contains_key("servers", "900")

    record = await reopened.put("curators", make_curator("333", "C"))
    assert record.sequence == 4


@pytest.mark.asyncio
async def test_unreadable_record_refuses_to_load(archive, backup_config):
    await archive.put("curators", make_curator("111", "A"))
    (archive.archive_dir / "curators_broken.json").write_text("{")

    with pytest.raises(json.JSONDecodeError):
        ArchiveStore(backup_config)


@pytest.mark.asyncio
async def test_write_failure_raises_and_leaves_no_record(archive):
    """Test a failed write surfaces as ArchiveWriteFailed."""
    with patch.object(archive, "_write_file", side_effect=OSError(28, "No space left on device")):
        with pytest.raises(ArchiveWriteFailed) as exc_info:
            await archive.put("curators", make_curator("111", "A"))

    assert exc_info.value.natural_key == "111"
    assert not archive.contains_key("curators", "111")
    assert list(archive.get_all()) == []


@pytest.mark.asyncio
async def test_failed_overwrite_keeps_previous_record(archive):
    await archive.put("curators", make_curator("111", "A"))

    with patch.object(archive, "_write_file", side_effect=OSError("disk full")):
        with pytest.raises(ArchiveWriteFailed):
            await archive.put("curators", make_curator("111", "A2"))

    assert archive.get("curators", "111").entity["name"] == "A"


@pytest.mark.asyncio
async def test_write_is_retried(backup_config):
    """Test transient OSErrors are retried before giving up."""
    archive = ArchiveStore(replace(backup_config, archive_write_attempts=3))

    with patch.object(archive, "_write_file", side_effect=[OSError("busy"), OSError("busy"), None]) as mock_write:
        await archive.put("curators", make_curator("111", "A"))
    assert mock_write.call_count == 3
    assert archive.contains_key("curators", "111")

    with patch.object(archive, "_write_file", side_effect=OSError("gone")) as mock_write:
        with pytest.raises(ArchiveWriteFailed):
            await archive.put("curators", make_curator("222", "B"))
    assert mock_write.call_count == 3


@pytest.mark.asyncio
async def test_put_rejects_unarchivable(archive):
    with pytest.raises(ValueError, match="not archivable"):
        await archive.put("botSettings", make_setting("prefix", "!"))

    with pytest.raises(ValueError):
        await archive.put("curators", {"name": "no key"})


@pytest.mark.asyncio
async def test_remove(archive):
    await archive.put("curators", make_curator("111", "A"))

    removed = await archive.remove("curators", "111")
    assert removed.natural_key == "111"
    assert not archive.contains_key("curators", "111")
    assert list(archive.archive_dir.glob("*.json")) == []
    assert await archive.remove("curators", "111") is None


@pytest.mark.asyncio
async def test_keys_with_unsafe_characters(archive):
    await archive.put("curators", make_curator("../../etc/passwd", "X"))
    await archive.put("curators", make_curator("..__..__etc__passwd", "Y"))

    assert len(list(archive.archive_dir.glob("*.json"))) == 2
    assert archive.contains_key("curators", "../../etc/passwd")


@pytest.mark.asyncio
async def test_put_bundles_related_rows(archive, backup_config):
    """Test related rows and their counts are stored with the record and reloaded."""
    related = {
        "activities": [make_activity(1, 1, message_id="m1", id=4), make_activity(1, 1, message_id="m2", id=5)],
        "taskReports": [],
    }
    record = await archive.put("curators", make_curator("111", "A", id=1), related=related)

    assert record.stats == {"activities": 2, "taskReports": 0}
    assert [a["messageId"] for a in record.related["activities"]] == ["m1", "m2"]

    reloaded = ArchiveStore(backup_config).get("curators", "111")
    assert reloaded == record


@pytest.mark.asyncio
async def test_latest_policy_keeps_earlier_related_rows(archive):
    """Test re-archiving a key does not drop rows bundled the first time."""
    await archive.put("curators", make_curator("111", "A"), related={"activities": [make_activity(1, 1, message_id="m1")]})
    record = await archive.put(
        "curators",
        make_curator("111", "A2"),
        related={"activities": [make_activity(1, 1, message_id="m1", content="edited"), make_activity(1, 1, message_id="m2")]},
    )

    assert record.entity["name"] == "A2"
    assert [a["messageId"] for a in record.related["activities"]] == ["m1", "m2"]
    assert record.related["activities"][0]["content"] == "edited"
    assert record.stats == {"activities": 2}


@pytest.mark.asyncio
async def test_first_policy_still_collects_related_rows(backup_config):
    archive = ArchiveStore(replace(backup_config, archive_policy="first"))
    first = await archive.put("servers", make_server("900", "Main"), related={"taskReports": [make_task_report(1, "r1")]})
    await archive.put("curators", make_curator("111", "A"))

    record = await archive.put("servers", make_server("900", "Renamed"), related={"taskReports": [make_task_report(1, "r2")]})

    assert record.entity["name"] == "Main"
    assert record.sequence == first.sequence
    assert record.stats == {"taskReports": 2}
    # The first record keeps its place in insertion order
    assert [r.natural_key for r in archive.get_all()] == ["900", "111"]


@pytest.mark.asyncio
async def test_add_related_requires_archived_key(archive):
    with pytest.raises(EntityNotFoundError):
        await archive.add_related("servers", "900", {"activities": [make_activity(1, 1)]})


@pytest.mark.asyncio
async def test_list_archives_newest_first(archive):
    await archive.put("curators", make_curator("111", "Alpha"), related={"activities": [make_activity(1, 1)]})
    await archive.put("servers", make_server("900", "Main"))
    await archive.put("curators", make_curator("222", "Bravo"))

    listing = await archive.list_archives()

    assert [s.natural_key for s in listing] == ["222", "900", "111"]
    assert [s.entity_name for s in listing] == ["Bravo", "Main", "Alpha"]
    assert listing[2].stats == {"activities": 1}
    assert listing[2].reason == "deleted-curator"
    assert listing[2].size_bytes == next(archive.archive_dir.glob("curators_111_*.json")).stat().st_size
