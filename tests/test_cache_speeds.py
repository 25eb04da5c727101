from unittest.mock import patch

import pytest

from ttc_speed_cache.cache_speeds import main, parse_args, print_stats
from ttc_speed_cache.models import SpeedRecord
from ttc_speed_cache.store import LocalStore


def test_days_defaults_to_settings():
    assert parse_args([]).days == 30


def test_days_positional():
    assert parse_args(["7"]).days == 7


@pytest.mark.parametrize("bad", ["0", "-3", "abc", "1.5"])
def test_bad_days_is_usage_error(bad, capsys):
    with pytest.raises(SystemExit) as exc:
        parse_args([bad])
    assert exc.value.code == 2
    assert "invalid duration" in capsys.readouterr().err


def test_usage_error_happens_before_any_collection(tmp_path):
    with patch("ttc_speed_cache.cache_speeds.collect") as collect:
        with pytest.raises(SystemExit):
            main(["-1"])
    collect.assert_not_called()


def test_print_stats_empty(tmp_path, capsys):
    print_stats(LocalStore(tmp_path), "2026-01-21")
    assert "No data collected yet" in capsys.readouterr().out


def test_print_stats(tmp_path, capsys):
    store = LocalStore(tmp_path)
    store.append(
        "2026-01-22",
        [
            SpeedRecord(1769040000000, "7", 9.0, 2),
            SpeedRecord(1769040000000 + 7_200_000, "504", 4.0, 1),
        ],
    )
    print_stats(store, "2026-01-22")
    out = capsys.readouterr().out
    assert "Collection date: 2026-01-22" in out
    assert "Duration: 2.00 hours" in out
    assert "Total records: 2" in out
    assert "Unique routes: 2" in out


def test_print_stats_corrupt_partition(tmp_path, capsys):
    store = LocalStore(tmp_path)
    store.partition_path("2026-01-22").write_bytes(b"\xa3abc")
    print_stats(store, "2026-01-22")
    assert "unreadable" in capsys.readouterr().out
