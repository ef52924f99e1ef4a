import threading
import unittest
from types import SimpleNamespace
from unittest import mock

from serialprobe.discovery.sources import ComPortWatcher, candidate_from_port
from serialprobe.models import SourceStatus


def port(device, hwid="USB VID:PID=0483:374B SER=0671", product="STM32 STLink", serial_number=None):
    return SimpleNamespace(
        device=device,
        hwid=hwid,
        product=product,
        description=f"{product} ({device})",
        serial_number=serial_number,
        vid=0x0483,
        pid=0x374B,
        manufacturer="STMicroelectronics",
        location="1-1:1.2",
        interface=None,
    )


class CandidateFromPortTests(unittest.TestCase):
    def test_builds_identity_from_port_and_hwid(self) -> None:
        candidate = candidate_from_port(port("COM3", serial_number="NANO_1"), ".*")
        self.assertEqual(candidate.device_id, "COM3|USB VID:PID=0483:374B SER=0671")
        self.assertEqual(candidate.port, "COM3")
        self.assertEqual(candidate.name, "STM32 STLink")
        self.assertEqual(candidate.serial_number, "NANO_1")
        self.assertEqual(candidate.metadata["vid"], 0x0483)

    def test_falls_back_to_description_without_product(self) -> None:
        info = port("COM4", hwid="", product=None)
        info.description = "USB Serial Device (COM4)"
        candidate = candidate_from_port(info, ".*")
        self.assertEqual(candidate.device_id, "COM4")
        self.assertEqual(candidate.name, "USB Serial Device (COM4)")


class ComPortWatcherTests(unittest.TestCase):
    def make_watcher(self, lister):
        watcher = ComPortWatcher("ACM", poll_interval=30.0, lister=lister)
        self.added = []
        self.removed = []
        self.completed = threading.Event()
        watcher.subscribe(
            lambda selector, candidate: self.added.append((selector, candidate.port)),
            lambda selector, device_id: self.removed.append((selector, device_id)),
            lambda selector: self.completed.set(),
        )
        self.addCleanup(watcher.stop)
        return watcher

    def test_first_scan_reports_devices_then_completion(self) -> None:
        lister = mock.Mock(return_value=[port("/dev/ttyACM0"), port("/dev/ttyACM1", hwid="x")])
        watcher = self.make_watcher(lister)

        watcher.start()
        self.assertTrue(self.completed.wait(2.0))

        lister.assert_called_with("ACM")
        self.assertEqual(
            self.added, [("ACM", "/dev/ttyACM0"), ("ACM", "/dev/ttyACM1")]
        )
        self.assertEqual(watcher.status, SourceStatus.ENUMERATION_COMPLETED)

        watcher.stop()
        self.assertEqual(watcher.status, SourceStatus.STOPPED)

    def test_poll_reports_differences(self) -> None:
        scans = [
            [port("/dev/ttyACM0")],
            [port("/dev/ttyACM1", hwid="other")],
        ]
        watcher = self.make_watcher(lambda selector: scans.pop(0))

        watcher.poll_once()
        watcher.poll_once()

        self.assertEqual(self.added, [("ACM", "/dev/ttyACM0"), ("ACM", "/dev/ttyACM1")])
        self.assertEqual(
            self.removed, [("ACM", "/dev/ttyACM0|USB VID:PID=0483:374B SER=0671")]
        )

    def test_enumeration_failure_aborts_watcher(self) -> None:
        watcher = self.make_watcher(mock.Mock(side_effect=OSError("no sysfs")))

        with self.assertLogs("serialprobe.discovery.sources", level="ERROR"):
            watcher.start()
            watcher._thread.join(2.0)

        self.assertEqual(watcher.status, SourceStatus.ABORTED)
        self.assertFalse(self.completed.is_set())


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
