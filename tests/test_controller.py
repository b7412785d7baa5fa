import asyncio
import unittest
from datetime import date

from fake_engine import FakeEngine

from amortise_form import config
from amortise_form.controller import RecalculationController
from amortise_form.data_models import ControlEvent, EventKind, Param
from amortise_form.errors import PersistenceError, ValidationError
from amortise_form.session import InputMode, RecalcState
from amortise_form.storage import MemoryStorage


def _clock():
    return date(2024, 1, 1)


class SpyStorage(MemoryStorage):
    def __init__(self, initial=None):
        super().__init__(initial)
        self.clear_calls = 0

    def clear(self):
        self.clear_calls += 1
        super().clear()


class BrokenStorage:
    def get(self, key):
        raise PersistenceError("store offline", key=key)

    def set(self, key, value):
        raise PersistenceError("store offline", key=key)

    def clear(self):
        raise PersistenceError("store offline")


class ControllerTestCase(unittest.IsolatedAsyncioTestCase):
    def make_controller(self, engine=None, storage=None):
        self.engine = engine or FakeEngine()
        self.storage = storage if storage is not None else SpyStorage()
        self.controller = RecalculationController(self.engine, self.storage, clock=_clock)
        return self.controller

    async def send(self, control_id, kind, value=None):
        return await self.controller.dispatch(ControlEvent(control_id, kind, value))


class StartTests(ControllerTestCase):
    async def test_start_renders_default_schedule(self):
        controller = self.make_controller()
        outcome = await controller.start()
        session = controller.session

        self.assertIs(outcome, RecalcState.RENDERED)
        self.assertIs(session.status, RecalcState.IDLE)
        self.assertEqual(len(session.table.rows), 12)
        self.assertEqual(session.chart.labels, [str(m) for m in range(1, 13)])
        self.assertEqual(session.summary.monthly_payment, "856.07")
        self.assertEqual(len(self.engine.calls), 1)
        call = self.engine.calls[0]
        self.assertEqual(call["disbursal_date"], "2024-01-01")
        self.assertEqual(call["first_payment_date"], "2024-02-01")
        self.assertEqual(call["first_capitalisation_date"], "2024-02-01")
        self.assertAlmostEqual(call["annual_rate"], 0.05)

    async def test_start_persists_snapshot(self):
        await self.make_controller().start()
        self.assertEqual(self.storage.get("principal"), "10000")
        self.assertEqual(self.storage.get("cap_date_checkbox"), "false")

    async def test_start_restores_snapshot(self):
        storage = SpyStorage(
            {
                "principal": "25000",
                "num_payments": "6",
                "cap_date_checkbox": "true",
                "first_capitalisation_date": "2024-02-15",
            }
        )
        controller = self.make_controller(storage=storage)
        await controller.start()
        call = self.engine.calls[0]
        self.assertEqual(call["principal"], 25000.0)
        self.assertEqual(call["num_payments"], 6)
        self.assertEqual(call["first_capitalisation_date"], "2024-02-15")
        self.assertEqual(len(controller.session.table.rows), 6)
        self.assertFalse(controller.form.controls["first_capitalisation_date"].disabled)

    async def test_unavailable_storage_does_not_block_rendering(self):
        controller = self.make_controller(storage=BrokenStorage())
        outcome = await controller.start()
        self.assertIs(outcome, RecalcState.RENDERED)
        self.assertEqual(len(controller.session.table.rows), 12)

    async def test_explanation_set_on_start(self):
        controller = self.make_controller()
        await controller.start()
        self.assertEqual(controller.session.explanation, config.INTEREST_METHOD_EXPLANATIONS["actual_actual"])


class TriggerPolicyTests(ControllerTestCase):
    async def asyncSetUp(self):
        await self.make_controller().start()
        self.engine.calls.clear()

    async def test_slider_drag_computes_once_on_release(self):
        for position in ("45", "48", "50"):
            self.assertFalse(await self.send("principal_slider", EventKind.ADJUST, position))
        self.assertIs(self.controller.session.input_mode("principal_slider"), InputMode.DRAGGING)
        self.assertEqual(self.controller.form.controls["principal"].value, "31623")
        self.assertEqual(self.engine.calls, [])

        self.assertTrue(await self.send("principal_slider", EventKind.RELEASE, "50"))
        self.assertEqual(len(self.engine.calls), 1)
        self.assertEqual(self.engine.calls[0]["principal"], 31623.0)
        self.assertIs(self.controller.session.input_mode("principal_slider"), InputMode.IDLE)

    async def test_fractional_slider_position_commits_whole_payments(self):
        await self.send("num_payments_slider", EventKind.ADJUST, "23.6")
        self.assertTrue(await self.send("num_payments_slider", EventKind.RELEASE, "23.6"))
        self.assertIs(self.controller.session.outcome, RecalcState.RENDERED)
        self.assertEqual(self.controller.form.controls["num_payments"].value, "24")
        self.assertEqual(self.engine.calls[-1]["num_payments"], 24)

    async def test_release_without_adjust_is_ignored(self):
        self.assertFalse(await self.send("num_payments_slider", EventKind.RELEASE, "24"))
        self.assertEqual(self.engine.calls, [])

    async def test_linear_slider(self):
        await self.send("num_payments_slider", EventKind.ADJUST, "24")
        await self.send("num_payments_slider", EventKind.RELEASE, "24")
        self.assertEqual(self.engine.calls[-1]["num_payments"], 24)
        self.assertEqual(len(self.controller.session.table.rows), 24)

    async def test_text_commits_on_blur(self):
        self.assertFalse(await self.send("principal", EventKind.INPUT, "2000"))
        self.assertFalse(await self.send("principal", EventKind.INPUT, "20000"))
        self.assertEqual(self.engine.calls, [])
        self.assertAlmostEqual(float(self.controller.form.controls["principal_slider"].value), 46.0206, places=3)

        self.assertTrue(await self.send("principal", EventKind.BLUR))
        self.assertEqual(len(self.engine.calls), 1)
        self.assertEqual(self.engine.calls[0]["principal"], 20000.0)

    async def test_select_commits_on_change(self):
        self.assertTrue(await self.send("interest_method", EventKind.CHANGE, "actual_360"))
        self.assertEqual(self.engine.calls[-1]["interest_method"], "actual_360")
        self.assertEqual(self.controller.session.explanation, config.INTEREST_METHOD_EXPLANATIONS["actual_360"])

    async def test_radio_commits_on_change(self):
        await self.send("interest_type", EventKind.CHANGE, "simple")
        self.assertEqual(self.engine.calls[-1]["interest_type"], "simple")

    async def test_first_payment_change_mirrors_capitalisation(self):
        self.assertTrue(await self.send("first_payment_date", EventKind.CHANGE, "2024-03-01"))
        self.assertEqual(self.controller.form.controls["first_capitalisation_date"].value, "2024-03-01")
        self.assertEqual(self.engine.calls[-1]["first_capitalisation_date"], "2024-03-01")

    async def test_capitalisation_toggle_persists_without_recompute(self):
        self.assertFalse(await self.send("cap_date_checkbox", EventKind.TOGGLE, "true"))
        self.assertEqual(self.engine.calls, [])
        self.assertEqual(self.storage.get("cap_date_checkbox"), "true")
        self.assertFalse(self.controller.form.controls["first_capitalisation_date"].disabled)

        await self.send("first_capitalisation_date", EventKind.CHANGE, "2024-02-10")
        await self.send("first_payment_date", EventKind.CHANGE, "2024-03-01")
        self.assertEqual(self.engine.calls[-1]["first_capitalisation_date"], "2024-02-10")

    async def test_disabled_capitalisation_date_rejected(self):
        with self.assertRaises(ValidationError):
            await self.send("first_capitalisation_date", EventKind.CHANGE, "2024-02-10")
        self.assertEqual(self.engine.calls, [])

    async def test_blur_cannot_write_locked_capitalisation_date(self):
        with self.assertRaises(ValidationError):
            await self.send("first_capitalisation_date", EventKind.BLUR, "2030-07-01")
        await self.controller.recompute()
        self.assertEqual(self.controller.form.controls["first_capitalisation_date"].value, "2024-02-01")
        self.assertEqual(self.engine.calls[-1]["first_capitalisation_date"], "2024-02-01")
        self.assertEqual(self.storage.get("first_capitalisation_date"), "2024-02-01")

    async def test_blur_on_disabled_fixed_payment_keeps_it_empty(self):
        self.assertFalse(await self.send("fixed_payment", EventKind.BLUR, "900"))
        self.assertEqual(self.controller.form.controls["fixed_payment"].value, "")

    async def test_unknown_control(self):
        with self.assertRaises(ValidationError) as ctx:
            await self.send("loan_term", EventKind.BLUR, "3")
        self.assertIsNone(ctx.exception.param)


class FailureTests(ControllerTestCase):
    async def asyncSetUp(self):
        await self.make_controller().start()

    async def test_engine_error_shows_banner_and_clears_views(self):
        triggered = await self.send("num_payments", EventKind.BLUR, "0")
        session = self.controller.session

        self.assertTrue(triggered)
        self.assertIs(session.outcome, RecalcState.FAILED)
        self.assertTrue(session.error.visible)
        self.assertEqual(session.error.message, "Number of payments must be positive")
        self.assertIn("Traceback", session.error.detail)
        self.assertEqual(session.table.rows, [])
        self.assertIsNone(session.chart)
        self.assertEqual(session.summary.monthly_payment, "0")
        self.assertEqual(self.storage.get("num_payments"), "12")

    async def test_recovers_after_error(self):
        await self.send("num_payments", EventKind.BLUR, "0")
        await self.send("num_payments", EventKind.BLUR, "6")
        session = self.controller.session
        self.assertIs(session.outcome, RecalcState.RENDERED)
        self.assertFalse(session.error.visible)
        self.assertEqual(len(session.table.rows), 6)
        self.assertEqual(self.storage.get("num_payments"), "6")

    async def test_invalid_input_never_reaches_engine(self):
        calls = len(self.engine.calls)
        await self.send("principal", EventKind.BLUR, "12abc")
        session = self.controller.session
        self.assertEqual(len(self.engine.calls), calls)
        self.assertIs(session.outcome, RecalcState.FAILED)
        self.assertIn(Param.PRINCIPAL, session.field_errors)
        self.assertFalse(session.error.visible)
        self.assertEqual(session.table.rows, [])
        self.assertEqual(self.controller.view_state()["field_errors"].keys(), {"principal"})


class ResetTests(ControllerTestCase):
    async def test_reset_restores_defaults_and_computes_once(self):
        controller = self.make_controller()
        await controller.start()
        await self.send("principal", EventKind.BLUR, "50000")
        await self.send("disbursal_date", EventKind.CHANGE, "2024-03-10")
        await self.send("first_payment_date", EventKind.CHANGE, "2024-05-01")
        await self.send("balloon_payment", EventKind.BLUR, "5000")
        await self.send("option_fee", EventKind.BLUR, "250")
        await self.send("cap_date_checkbox", EventKind.TOGGLE, "true")
        await self.send("first_capitalisation_date", EventKind.CHANGE, "2024-04-15")
        await self.send("num_payments_slider", EventKind.ADJUST, "30")
        calls = len(self.engine.calls)

        outcome = await controller.reset()
        controls = controller.form.controls

        self.assertIs(outcome, RecalcState.RENDERED)
        self.assertEqual(self.storage.clear_calls, 1)
        self.assertEqual(len(self.engine.calls), calls + 1)
        self.assertEqual(controls["principal"].value, "10000")
        self.assertEqual(controls["disbursal_date"].value, "2024-01-01")
        self.assertEqual(controls["first_payment_date"].value, "2024-02-01")
        self.assertEqual(controls["first_capitalisation_date"].value, "2024-02-01")
        self.assertTrue(controls["first_capitalisation_date"].disabled)
        self.assertFalse(controls["cap_date_checkbox"].checked)
        self.assertEqual(controls["balloon_payment"].value, "0")
        self.assertEqual(controls["balloon_payment_slider"].value, "0")
        self.assertEqual(controls["option_fee"].value, "0")

        call = self.engine.calls[-1]
        self.assertEqual(call["disbursal_date"], "2024-01-01")
        self.assertEqual(call["first_payment_date"], "2024-02-01")
        self.assertEqual(call["first_capitalisation_date"], "2024-02-01")
        self.assertIsNone(call["balloon_payment"])
        self.assertIsNone(call["option_fee"])
        self.assertEqual(controller.session.input_modes, {})
        self.assertEqual(self.storage.get("principal"), "10000")


class FixedPaymentTests(ControllerTestCase):
    async def test_enable_before_first_schedule(self):
        controller = self.make_controller()
        controller.form.apply_defaults()
        self.assertTrue(await self.send("use_fixed_payment", EventKind.TOGGLE, "true"))
        self.assertIsNone(self.engine.calls[0]["fixed_payment"])
        self.assertEqual(controller.form.controls["fixed_payment"].value, "856.07")

    async def test_enable_after_schedule(self):
        controller = self.make_controller()
        await controller.start()
        await self.send("use_fixed_payment", EventKind.TOGGLE, "true")
        self.assertEqual(controller.form.controls["fixed_payment"].value, "856.07")
        self.assertEqual(self.engine.calls[-1]["fixed_payment"], 856.07)

    async def test_fixed_payment_blur_only_when_enabled(self):
        controller = self.make_controller()
        await controller.start()
        calls = len(self.engine.calls)
        self.assertFalse(await self.send("fixed_payment", EventKind.BLUR))
        self.assertEqual(len(self.engine.calls), calls)

        await self.send("use_fixed_payment", EventKind.TOGGLE, "true")
        await self.send("fixed_payment", EventKind.INPUT, "900")
        self.assertTrue(await self.send("fixed_payment", EventKind.BLUR))
        self.assertEqual(self.engine.calls[-1]["fixed_payment"], 900.0)

    async def test_disable_clears_value(self):
        controller = self.make_controller()
        await controller.start()
        await self.send("use_fixed_payment", EventKind.TOGGLE, "true")
        await self.send("use_fixed_payment", EventKind.TOGGLE, "false")
        fixed = controller.form.controls["fixed_payment"]
        self.assertEqual(fixed.value, "")
        self.assertTrue(fixed.disabled)
        self.assertIsNone(self.engine.calls[-1]["fixed_payment"])


class ConcurrencyTests(ControllerTestCase):
    async def test_latest_request_wins(self):
        gate = asyncio.Event()
        controller = self.make_controller(engine=FakeEngine(gate=gate))
        controller.form.apply_defaults()

        task = asyncio.create_task(controller.recompute())
        await asyncio.sleep(0)
        self.assertTrue(controller.busy)

        self.assertTrue(await self.send("principal", EventKind.BLUR, "20000"))
        self.assertTrue(controller.session.pending)
        gate.set()
        outcome = await task

        self.assertIs(outcome, RecalcState.RENDERED)
        self.assertEqual(len(self.engine.calls), 1)
        self.assertEqual(self.engine.calls[0]["principal"], 20000.0)
        self.assertFalse(controller.session.pending)
        self.assertFalse(controller.busy)

    async def test_readiness_awaited_once(self):
        controller = self.make_controller()
        await controller.start()
        await controller.recompute()
        await controller.recompute()
        self.assertEqual(self.engine.ready_calls, 1)
        self.assertEqual(len(self.engine.calls), 3)

    async def test_failed_readiness_is_retried(self):
        controller = self.make_controller(engine=FakeEngine(fail_ready=True))
        outcome = await controller.start()
        self.assertIs(outcome, RecalcState.FAILED)
        self.assertTrue(controller.session.error.visible)
        self.assertIn("engine module failed to load", controller.session.error.message)
        self.assertEqual(self.engine.calls, [])

        self.engine.fail_ready = False
        outcome = await controller.recompute()
        self.assertIs(outcome, RecalcState.RENDERED)
        self.assertEqual(self.engine.ready_calls, 2)


class ViewStateTests(ControllerTestCase):
    async def test_view_state_is_json_ready(self):
        controller = self.make_controller()
        await controller.start()
        view = controller.view_state()
        self.assertEqual(view["status"], "idle")
        self.assertEqual(view["outcome"], "rendered")
        self.assertEqual(view["controls"]["principal"]["value"], "10000")
        self.assertEqual(view["table"]["columns"], ["month", "payment", "interest", "principal", "balance"])
        self.assertEqual(len(view["table"]["rows"]), 12)
        self.assertEqual(len(view["chart"]["data"]), 3)
        self.assertFalse(view["error"]["visible"])


if __name__ == "__main__":
    unittest.main()
