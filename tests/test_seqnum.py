from __future__ import annotations

from pathlib import Path

import allure
import pytest

from run_command_handler.errors import PersistenceError
from run_command_handler.seqnum import (
    NO_SEQ_NUM,
    check_and_save_seq_num,
    find_latest_seq_num,
    read_seq_num,
)

pytestmark = [
    allure.epic("Invocation Gate"),
    allure.feature("Sequence Number State"),
]


def test_check_and_save_seq_num_fails_when_directory_is_missing(tmp_path: Path) -> None:
    with pytest.raises(PersistenceError, match="failed to save sequence number"):
        check_and_save_seq_num(0, tmp_path / "non" / "existing" / "seqnum")


def test_check_and_save_seq_num_is_monotonic(tmp_path: Path) -> None:
    state = tmp_path / "seqnum"

    # no sequence number, 0 comes in
    assert check_and_save_seq_num(0, state) is False
    assert read_seq_num(state) == 0

    # file=0, seq=0 comes in
    assert check_and_save_seq_num(0, state) is True

    # file=0, seq=1 comes in
    assert check_and_save_seq_num(1, state) is False
    assert read_seq_num(state) == 1

    # file=1, seq=1 and seq=0 come in
    assert check_and_save_seq_num(1, state) is True
    assert check_and_save_seq_num(0, state) is True
    assert read_seq_num(state) == 1


@pytest.mark.parametrize(("stored", "incoming"), [(0, 0), (5, 3), (7, 7), (100, 0)])
def test_lower_or_equal_seq_num_skips_and_keeps_stored_value(
    tmp_path: Path,
    stored: int,
    incoming: int,
) -> None:
    state = tmp_path / "seqnum"
    assert check_and_save_seq_num(stored, state) is False

    assert check_and_save_seq_num(incoming, state) is True
    assert state.read_text("utf-8") == str(stored)


def test_save_leaves_no_temp_files_behind(tmp_path: Path) -> None:
    state = tmp_path / "seqnum"
    check_and_save_seq_num(3, state)
    check_and_save_seq_num(4, state)

    assert sorted(path.name for path in tmp_path.iterdir()) == ["seqnum"]


def test_read_seq_num_missing_file_means_never_processed(tmp_path: Path) -> None:
    assert read_seq_num(tmp_path / "seqnum") == NO_SEQ_NUM


def test_read_seq_num_rejects_corrupt_content(tmp_path: Path) -> None:
    state = tmp_path / "seqnum"
    state.write_text("not-a-number", "utf-8")

    with pytest.raises(PersistenceError, match="failed to read sequence number"):
        check_and_save_seq_num(1, state)


def test_check_and_save_seq_num_rejects_negative_input(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="must be >= 0"):
        check_and_save_seq_num(-1, tmp_path / "seqnum")


def test_find_latest_seq_num_picks_highest_settings_file(tmp_path: Path) -> None:
    for name in ("0.settings", "2.settings", "10.settings", "3.status", "notes.txt"):
        (tmp_path / name).write_text("{}", "utf-8")

    assert find_latest_seq_num(tmp_path) == 10


def test_find_latest_seq_num_missing_folder(tmp_path: Path) -> None:
    assert find_latest_seq_num(tmp_path / "missing") == NO_SEQ_NUM
