import io
import sys
from pathlib import Path
import unittest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from rich.console import Console

from callwalk.console import DEAD_END_MESSAGE, OperatorConsole
from callwalk.script.renderer import Placeholders
from callwalk.store.repository import StepRepository
from callwalk.store.storage import MemoryStorage
from callwalk.store.sync import Scheduler

BUNDLE = {
    "marcas": {
        "ACME": {
            "s1": {
                "id": "s1",
                "title": "Abordagem [cliente]",
                "body": "Hi [Primeiro nome do cliente]",
                "buttons": [
                    {"label": "Next", "next": "s2", "primary": True},
                    {"label": "Broken", "next": "missing"},
                    {"label": "End", "next": "fim"},
                ],
                "alert": {"title": "", "message": "Check the contract"},
                "tabulations": [{"name": "Sale", "description": "Customer agreed"}],
            },
            "s2": {"id": "s2", "title": "Offer", "body": "Bye", "buttons": []},
        }
    }
}


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class TestOperatorConsole(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.repository = StepRepository(MemoryStorage(), scheduler=Scheduler(self.clock))
        self.repository.import_from_json(BUNDLE)
        self.console = Console(record=True, width=100, color_system=None, file=io.StringIO())
        self.operator = OperatorConsole(
            self.repository,
            self.repository.find_product("ACME"),
            placeholders=Placeholders(customer_first_name="Maria"),
            console=self.console,
        )
        self.operator.start()

    def screen(self):
        self.console.print(self.operator.render())
        return self.console.export_text()

    def test_first_screen(self):
        text = self.screen()
        self.assertIn("Hi Maria", text)
        self.assertIn("Abordagem [cliente]", text)
        self.assertIn("Atenção", text)
        self.assertIn("Check the contract", text)
        self.assertIn("[1]", text)
        self.assertIn("Next", text)
        self.assertIn("Sale", text)
        self.assertTrue(self.operator.pulse.is_pulsing)

    def test_choose_and_back(self):
        self.operator.handle("1")
        self.assertEqual(self.operator.navigation.current, "s2")
        self.assertIn("Bye", self.screen())
        self.operator.handle("b")
        self.assertEqual(self.operator.navigation.current, "s1")

    def test_dead_end_and_terminal(self):
        self.operator.handle("2")
        self.assertIn(DEAD_END_MESSAGE, self.screen())
        self.operator.handle("b")
        self.operator.handle("3")
        self.assertIn("End of script", self.screen())
        self.operator.handle("b")
        self.assertEqual(self.operator.navigation.current, "s1")

    def test_invalid_input_sets_status(self):
        self.operator.handle("9")
        self.assertEqual(self.operator.state.status_message, "No option 9")
        self.operator.handle("b")
        self.assertEqual(self.operator.state.status_message, "Nothing to go back to")
        self.operator.handle("zz")
        self.assertIn("Unknown command", self.screen())

    def test_search_and_jump(self):
        self.operator.handle("/offer")
        self.assertEqual([step.id for step in self.operator.state.search_results], ["s2"])
        self.assertIn("[s1]", self.screen())
        self.operator.handle("s1")
        self.assertEqual(self.operator.navigation.current, "s2")
        self.assertEqual(self.operator.state.search_query, "")

    def test_text_size_is_clamped(self):
        for _ in range(5):
            self.operator.handle("+")
        self.assertEqual(self.operator.state.text_size, 120)
        for _ in range(10):
            self.operator.handle("-")
        self.assertEqual(self.operator.state.text_size, 50)

    def test_run_loop_quits(self):
        commands = iter(["1", "q"])
        operator = OperatorConsole(
            self.repository,
            self.repository.find_product("ACME"),
            console=self.console,
            input_fn=lambda prompt: next(commands),
        )
        operator.run()
        self.assertFalse(operator.navigation.active)
        self.assertIn("Bye", self.console.export_text())


if __name__ == "__main__":
    unittest.main()
