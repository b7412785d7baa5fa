import asyncio
import logging
import threading
from collections import OrderedDict
from typing import Any, Dict, Optional, Tuple, Union
from uuid import uuid4

from flask import Flask, jsonify, render_template, request, session

from amortise_form.bindings import FieldBindingRegistry
from amortise_form.config import MAX_SESSIONS, Settings, load_settings
from amortise_form.controller import RecalculationController
from amortise_form.data_models import ControlEvent, EventKind, InterestMethod, InterestType, LogScale
from amortise_form.engine import EngineAdapter, load_engine
from amortise_form.errors import AmortiseError, EngineError, ValidationError
from amortise_form.storage import SnapshotDatabase, create_database_from_env

logger = logging.getLogger(__name__)


class SessionRegistry:
    """One controller per browser session token.

    Every coroutine runs on a single long-lived event loop under a lock, so
    controllers see the same single-threaded execution the page has. All
    controllers share one engine adapter. Past ``max_sessions`` the least
    recently used controller is dropped; its form survives in the snapshot
    table and is restored on the next request.
    """

    def __init__(self, database: SnapshotDatabase, engine_factory, max_sessions: int = MAX_SESSIONS) -> None:
        self._database = database
        self._engine_factory = engine_factory
        self._engine: Optional[EngineAdapter] = None
        self._controllers: "OrderedDict[str, RecalculationController]" = OrderedDict()
        self._max_sessions = max_sessions
        self._loop = asyncio.new_event_loop()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._controllers)

    def __contains__(self, user_token: str) -> bool:
        return user_token in self._controllers

    def view_state(self, user_token: str, request_error: Optional[str] = None) -> Dict[str, Any]:
        with self._lock:
            view = self._controller(user_token).view_state()
        view["request_error"] = request_error
        return view

    def dispatch(self, user_token: str, event: ControlEvent) -> Dict[str, Any]:
        """Apply one event; raises ``ValidationError`` for a rejected event."""
        with self._lock:
            controller = self._controller(user_token)
            self._loop.run_until_complete(controller.dispatch(event))
            view = controller.view_state()
        view["request_error"] = None
        return view

    def reset(self, user_token: str) -> Dict[str, Any]:
        with self._lock:
            controller = self._controller(user_token)
            self._loop.run_until_complete(controller.reset())
            view = controller.view_state()
        view["request_error"] = None
        return view

    def _controller(self, user_token: str) -> RecalculationController:
        # Caller holds the lock.
        controller = self._controllers.get(user_token)
        if controller is not None:
            self._controllers.move_to_end(user_token)
            return controller
        if self._engine is None:
            self._engine = EngineAdapter(self._engine_factory())
        controller = RecalculationController(self._engine, self._database.storage_for(user_token))
        self._loop.run_until_complete(controller.start())
        self._controllers[user_token] = controller
        logger.debug("New form session %s", user_token)
        self._trim()
        return controller

    def _trim(self) -> None:
        while len(self._controllers) > self._max_sessions:
            user_token, evicted = self._controllers.popitem(last=False)
            evicted.presenter.clear()
            logger.debug("Dropped idle form session %s", user_token)


def _slider_bounds() -> Dict[str, Tuple[float, float, Union[float, str]]]:
    bounds: Dict[str, Tuple[float, float, Union[float, str]]] = {}
    for binding in FieldBindingRegistry():
        if binding.slider_id is None:
            continue
        if isinstance(binding.scale, LogScale):
            bounds[binding.slider_id] = (0.0, 100.0, "any")
        else:
            bounds[binding.slider_id] = (binding.scale.min, binding.scale.max, binding.scale.step)
    return bounds


def _ensure_user_token() -> str:
    token = session.get("user_token")
    if not token:
        token = uuid4().hex
        session["user_token"] = token
        session.modified = True
    return token


def _event_from_json(payload: Any) -> ControlEvent:
    if not isinstance(payload, dict):
        raise ValueError("Event payload must be a JSON object")
    try:
        kind = EventKind(payload.get("event", ""))
    except ValueError as exc:
        raise ValueError(f"Unknown event kind: {payload.get('event')!r}") from exc
    value = payload.get("value")
    return ControlEvent(
        control_id=str(payload.get("control", "")),
        kind=kind,
        value=None if value is None else str(value),
    )


def create_app(
    settings: Optional[Settings] = None,
    *,
    engine: Any = None,
    database: Optional[SnapshotDatabase] = None,
) -> Flask:
    settings = settings or load_settings()
    app = Flask(__name__)
    app.config["ASSET_VERSION"] = settings.asset_version
    app.secret_key = settings.secret_key

    def engine_factory():
        if engine is not None:
            return engine
        if not settings.engine:
            raise EngineError("No engine configured; set LOAN_AMORTISE_ENGINE")
        return load_engine(settings.engine)

    registry = SessionRegistry(
        database or create_database_from_env(settings.database_url),
        engine_factory,
        max_sessions=settings.max_sessions,
    )
    app.extensions["amortise_sessions"] = registry

    @app.route("/", methods=["GET"])
    def index():
        error = None
        view = None
        try:
            view = registry.view_state(_ensure_user_token())
        except AmortiseError as exc:
            error = str(exc)
        return render_template(
            "index.html",
            view=view,
            error=error,
            interest_methods=[m.value for m in InterestMethod],
            interest_types=[t.value for t in InterestType],
            slider_bounds=_slider_bounds(),
            asset_version=app.config["ASSET_VERSION"],
        )

    @app.get("/api/state")
    def state():
        try:
            return jsonify(registry.view_state(_ensure_user_token()))
        except AmortiseError as exc:
            return jsonify({"request_error": str(exc)}), 500

    @app.post("/api/events")
    def events():
        try:
            event = _event_from_json(request.get_json(silent=True))
        except ValueError as exc:
            return jsonify({"request_error": str(exc)}), 400
        user_token = _ensure_user_token()
        try:
            return jsonify(registry.dispatch(user_token, event))
        except ValidationError as exc:
            return jsonify(registry.view_state(user_token, str(exc))), 400
        except AmortiseError as exc:
            return jsonify({"request_error": str(exc)}), 500

    @app.post("/api/reset")
    def reset():
        try:
            return jsonify(registry.reset(_ensure_user_token()))
        except AmortiseError as exc:
            return jsonify({"request_error": str(exc)}), 500

    return app


if __name__ == "__main__":
    print("Starting loan amortisation web app...")
    create_app().run(host="0.0.0.0", port=8710, debug=True)
