"""
swap 검증 테스트
"""

import pytest

from hybrid_node_agent.config import Config
from hybrid_node_agent.system import SWAP, SwapValidator, parse_proc_swaps
from hybrid_node_agent.validation import is_remediable, is_warning, remediation

HEADER = "Filename\t\t\t\tType\t\tSize\t\tUsed\t\tPriority\n"


def write_swaps(root, body):
    path = root / "proc/swaps"
    path.parent.mkdir(parents=True)
    path.write_text(HEADER + body)


def test_parse_proc_swaps():
    entries = parse_proc_swaps(HEADER + "/swapfile  file  524280  0  -2\n/dev/sda2  partition  1048572  0  -3\n")
    assert [(e.path, e.swap_type) for e in entries] == [("/swapfile", "file"), ("/dev/sda2", "partition")]


def test_parse_proc_swaps_rejects_bad_line():
    with pytest.raises(ValueError, match="line 2"):
        parse_proc_swaps(HEADER + "garbage\n")


def test_no_swap_passes(tmp_path, informer):
    write_swaps(tmp_path, "")
    SwapValidator(str(tmp_path)).run(informer, Config())
    assert informer.events == [("starting", SWAP), ("done", SWAP, None)]


def test_missing_proc_swaps_passes(tmp_path, informer):
    SwapValidator(str(tmp_path)).run(informer, Config())
    assert informer.events[-1] == ("done", SWAP, None)


def test_partition_swap_is_fatal(tmp_path, informer):
    write_swaps(tmp_path, "/dev/sda2  partition  1048572  0  -3\n")

    with pytest.raises(Exception, match="partition swap detected") as excinfo:
        SwapValidator(str(tmp_path)).run(informer, Config())

    assert is_remediable(excinfo.value)
    assert not is_warning(excinfo.value)
    assert "/etc/fstab" in remediation(excinfo.value)


def test_file_swap_is_fatal(tmp_path, informer):
    write_swaps(tmp_path, "/swapfile  file  524280  0  -2\n")

    with pytest.raises(Exception, match="1 swap entries found") as excinfo:
        SwapValidator(str(tmp_path)).run(informer, Config())

    assert "/swapfile" in str(excinfo.value)
    assert informer.events[-1][2] is excinfo.value
