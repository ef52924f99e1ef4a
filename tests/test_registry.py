import threading
import time
import unittest
from unittest import mock

from serialprobe.discovery.registry import DeviceRegistry
from serialprobe.models import CandidateDevice, LogicalDevice, ValidationOutcome, ValidationState


def make_candidate(device_id="A", port="COM3", name="STM32 STLink"):
    return CandidateDevice(device_id=device_id, selector=".*", port=port, name=name)


def accept(candidate):
    return ValidationOutcome(candidate.device_id, True, description=f"{candidate.name} @ {candidate.port}")


def reject(candidate):
    return ValidationOutcome(candidate.device_id, False, reason="unrecognized device")


class DeviceRegistryTests(unittest.TestCase):
    def setUp(self) -> None:
        self.validator = mock.Mock()
        self.validator.validate.side_effect = accept
        self.enumerated = False
        self.disposed = []
        self.registry = DeviceRegistry(
            self.validator,
            dispose_grace_seconds=0.05,
            is_enumerated=lambda: self.enumerated,
            on_disposed=self.disposed.append,
        )

    def tearDown(self) -> None:
        self.registry.close()

    def test_add_before_enumeration_stays_pending(self) -> None:
        device = self.registry.on_device_added(make_candidate())

        self.assertEqual(device.state, ValidationState.PENDING)
        self.assertIs(self.registry.find_logical("A"), device)
        self.assertIsNotNone(self.registry.find("A"))
        self.assertEqual(self.registry.validated(), [])
        self.assertEqual(self.registry.pending(), [make_candidate()])
        self.validator.validate.assert_not_called()

    def test_duplicate_add_is_ignored(self) -> None:
        first = self.registry.on_device_added(make_candidate())
        second = self.registry.on_device_added(make_candidate())

        self.assertIs(first, second)
        self.assertEqual(len(self.registry.logical_devices()), 1)

    def test_add_after_enumeration_validates_immediately(self) -> None:
        self.enumerated = True

        device = self.registry.on_device_added(make_candidate())

        self.validator.validate.assert_called_once_with(make_candidate())
        self.assertEqual(device.state, ValidationState.VALIDATED)
        self.assertEqual(device.description, "STM32 STLink @ COM3")
        self.assertEqual(self.registry.validated(), [device])

    def test_add_after_enumeration_drops_rejected_device(self) -> None:
        self.enumerated = True
        self.validator.validate.side_effect = reject

        result = self.registry.on_device_added(make_candidate("B", "COM4", "Modem"))

        self.assertIsNone(result)
        self.assertIsNone(self.registry.find_logical("B"))
        self.assertIsNone(self.registry.find("B"))

    def test_reappearance_within_grace_keeps_device(self) -> None:
        registry = DeviceRegistry(self.validator, dispose_grace_seconds=2.5)
        self.addCleanup(registry.close)
        device = registry.on_device_added(make_candidate())
        registry.apply_outcome(accept(make_candidate()))

        registry.on_device_removed("A")
        self.assertIsNone(registry.find("A"))
        self.assertTrue(device.dispose_countdown.is_armed)
        time.sleep(0.2)
        again = registry.on_device_added(make_candidate())

        self.assertIs(again, device)
        self.assertFalse(device.dispose_countdown.is_armed)
        self.assertEqual(device.state, ValidationState.VALIDATED)
        self.assertEqual(registry.validated(), [device])
        self.validator.validate.assert_not_called()

    def test_removed_device_is_disposed_after_grace(self) -> None:
        device = self.registry.on_device_added(make_candidate())
        self.registry.apply_outcome(accept(make_candidate()))

        self.registry.on_device_removed("A")
        self.assertEqual(self.registry.validated(), [device])
        device.dispose_countdown.wait(1.0)

        self.assertIsNone(self.registry.find_logical("A"))
        self.assertEqual(self.registry.validated(), [])
        self.assertEqual(self.disposed, [device])

    def test_remove_of_unknown_device_is_harmless(self) -> None:
        self.registry.on_device_removed("missing")
        self.assertEqual(self.registry.logical_devices(), [])

    def test_rejection_removes_candidate_and_device(self) -> None:
        self.registry.on_device_added(make_candidate("B", "COM4", "Modem"))
        self.registry.apply_outcome(reject(make_candidate("B", "COM4", "Modem")))

        self.assertIsNone(self.registry.find("B"))
        self.assertIsNone(self.registry.find_logical("B"))

    def test_clear_drops_candidates_and_keeps_devices(self) -> None:
        device = self.registry.on_device_added(make_candidate())
        self.registry.apply_outcome(accept(make_candidate()))

        self.registry.clear()
        time.sleep(0.2)

        self.assertIsNone(self.registry.find("A"))
        self.assertIs(self.registry.find_logical("A"), device)
        self.assertIsNone(device.dispose_countdown)
        self.assertEqual(self.registry.validated(), [device])
        self.assertEqual(self.disposed, [])

    def test_readd_after_clear_reuses_device(self) -> None:
        device = self.registry.on_device_added(make_candidate())
        self.registry.apply_outcome(accept(make_candidate()))

        self.registry.clear()
        again = self.registry.on_device_added(make_candidate())

        self.assertIs(again, device)
        self.assertIsNotNone(self.registry.find("A"))
        self.assertEqual(self.registry.pending(), [])
        self.validator.validate.assert_not_called()

    def test_age_out_missing_arms_only_unreported_devices(self) -> None:
        kept = self.registry.on_device_added(make_candidate("A", "COM3"))
        gone = self.registry.on_device_added(make_candidate("B", "COM4"))
        self.registry.clear()
        self.registry.on_device_added(make_candidate("A", "COM3"))

        missing = self.registry.age_out_missing()

        self.assertEqual(len(missing), 1)
        self.assertIs(missing[0], gone)
        self.assertIsNone(kept.dispose_countdown)
        gone.dispose_countdown.wait(1.0)
        self.assertIsNone(self.registry.find_logical("B"))
        self.assertIs(self.registry.find_logical("A"), kept)
        self.assertEqual(len(self.disposed), 1)
        self.assertIs(self.disposed[0], gone)

    def test_pending_skips_devices_without_candidate(self) -> None:
        self.registry.on_device_added(make_candidate())
        self.registry.clear()

        self.assertEqual(self.registry.pending(), [])

    def test_devices_are_compared_by_identity(self) -> None:
        first = LogicalDevice(candidate=make_candidate())
        second = LogicalDevice(candidate=make_candidate())

        self.assertEqual(first, first)
        self.assertNotEqual(first, second)
        self.assertNotIn(second, [first])

    def test_devices_listed_in_insertion_order(self) -> None:
        for device_id, port in (("C", "COM5"), ("A", "COM3"), ("B", "COM4")):
            self.registry.on_device_added(make_candidate(device_id, port))
            self.registry.apply_outcome(accept(make_candidate(device_id, port)))

        self.assertEqual([d.device_id for d in self.registry.validated()], ["C", "A", "B"])

    def test_concurrent_add_remove_leaves_single_entry(self) -> None:
        registry = DeviceRegistry(self.validator, dispose_grace_seconds=5.0)
        self.addCleanup(registry.close)

        def churn() -> None:
            for _ in range(200):
                registry.on_device_added(make_candidate())
                registry.on_device_removed("A")

        threads = [threading.Thread(target=churn) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(5.0)

        self.assertEqual(len(registry.logical_devices()), 1)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
