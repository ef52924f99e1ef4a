import threading
import time
import unittest

from serialprobe.countdown import DisposeCountdown


class DisposeCountdownTests(unittest.TestCase):
    def test_countdown_expires(self) -> None:
        fired = threading.Event()
        countdown = DisposeCountdown(0.05, fired.set)

        countdown.start()
        self.assertTrue(countdown.is_armed)
        countdown.wait(1.0)

        self.assertTrue(fired.is_set())
        self.assertFalse(countdown.is_armed)

    def test_stop_prevents_expiry(self) -> None:
        calls = []
        countdown = DisposeCountdown(0.1, lambda: calls.append("expired"))

        countdown.start()
        self.assertTrue(countdown.stop())
        time.sleep(0.2)

        self.assertEqual(calls, [])
        self.assertFalse(countdown.stop())

    def test_restart_ignores_superseded_timer(self) -> None:
        calls = []
        countdown = DisposeCountdown(0.1, lambda: calls.append(time.monotonic()))

        countdown.start()
        time.sleep(0.05)
        restarted_at = time.monotonic()
        countdown.start()
        countdown.wait(1.0)

        self.assertEqual(len(calls), 1)
        self.assertGreaterEqual(calls[0] - restarted_at, 0.09)

    def test_negative_length_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            DisposeCountdown(-1, lambda: None)

    def test_expiry_runs_under_shared_lock(self) -> None:
        lock = threading.RLock()
        observed = []
        countdown = DisposeCountdown(
            0.01, lambda: observed.append(lock._is_owned()), lock=lock
        )
        countdown.start()
        countdown.wait(1.0)
        self.assertEqual(observed, [True])


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
