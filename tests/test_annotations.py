import sys
from datetime import datetime, timezone
from pathlib import Path
import unittest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from callwalk.script.annotations import (
    DEFAULT_ALERT_TITLE,
    ActiveAlert,
    TabulationPulse,
    active_alert,
    build_alert,
    recommended_tabulations,
)
from callwalk.script.graph import check_graph
from callwalk.script.steps import Alert, Button, Step, Tabulation
from callwalk.store.sync import Scheduler


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def make_step(step_id, buttons=(), **kwargs):
    return Step(
        id=step_id,
        title=step_id.title(),
        content="",
        buttons=[
            Button(id=f"btn-{step_id}-{index}", label=target or "end", next_step_id=target, order=index)
            for index, target in enumerate(buttons)
        ],
        **kwargs,
    )


class TestAlerts(unittest.TestCase):
    def test_active_alert_requires_message(self):
        self.assertIsNone(active_alert(make_step("a")))
        self.assertIsNone(active_alert(make_step("a", alert=Alert(title="Aviso", message="  "))))
        self.assertEqual(
            active_alert(make_step("a", alert=Alert(title="", message="Cuidado"))),
            ActiveAlert(title=DEFAULT_ALERT_TITLE, message="Cuidado"),
        )

    def test_build_alert_requires_both_fields(self):
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.assertIsNone(build_alert("Aviso", ""))
        self.assertIsNone(build_alert("", "Mensagem"))
        alert = build_alert(" Aviso ", " Mensagem ", now=now)
        self.assertEqual((alert.title, alert.message, alert.created_at), ("Aviso", "Mensagem", now))

    def test_recommended_tabulations_keep_order(self):
        tabs = [Tabulation(id="t2", name="B"), Tabulation(id="t1", name="A")]
        self.assertEqual(recommended_tabulations(make_step("a", tabulations=tabs)), tabs)
        self.assertEqual(recommended_tabulations(None), [])


class TestTabulationPulse(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.scheduler = Scheduler(self.clock)
        self.pulse = TabulationPulse(self.scheduler, duration=3.0)
        self.tabbed = make_step("a", tabulations=[Tabulation(id="t", name="Venda")])

    def test_pulse_expires(self):
        self.assertTrue(self.pulse.arrive(self.tabbed))
        self.clock.advance(2.9)
        self.scheduler.run_pending()
        self.assertTrue(self.pulse.is_pulsing)
        self.clock.advance(0.2)
        self.scheduler.run_pending()
        self.assertFalse(self.pulse.is_pulsing)

    def test_rearrival_restarts(self):
        self.pulse.arrive(self.tabbed)
        self.clock.advance(2.0)
        self.pulse.arrive(self.tabbed)
        self.clock.advance(2.0)
        self.scheduler.run_pending()
        self.assertTrue(self.pulse.is_pulsing)

    def test_step_without_tabulations_and_cancel(self):
        self.assertFalse(self.pulse.arrive(make_step("b")))
        self.pulse.arrive(self.tabbed)
        self.pulse.cancel()
        self.assertFalse(self.pulse.is_pulsing)
        self.assertIsNone(self.scheduler.next_deadline())


class TestGraphCheck(unittest.TestCase):
    def test_clean_graph_with_cycle(self):
        steps = [make_step("a", ["b"]), make_step("b", ["a", None])]
        report = check_graph("p", "a", steps)
        self.assertTrue(report.ok)
        self.assertEqual(report.reachable, {"a", "b"})

    def test_reports_dangling_and_unreachable(self):
        steps = [make_step("a", ["gone"]), make_step("island")]
        report = check_graph("p", "a", steps)
        self.assertEqual([(i.kind, i.step_id) for i in report.issues], [("dangling", "a"), ("unreachable", "island")])

    def test_missing_start(self):
        report = check_graph("p", "nope", [make_step("a")])
        self.assertEqual([i.kind for i in report.issues], ["missing-start"])


if __name__ == "__main__":
    unittest.main()
