"""Application entry point for the time-log approval bot."""

from __future__ import annotations

from pathlib import Path
from uuid import uuid4

from flask import Flask, jsonify, request
from pydantic import ValidationError
from slack_bolt import App as SlackApp
from slack_bolt.adapter.flask import SlackRequestHandler
from slack_sdk.errors import SlackApiError
from sqlalchemy import text
import structlog
from structlog.contextvars import bind_contextvars, unbind_contextvars

from timelog_approvals.actions import (
    APPROVE_ACTION_ID,
    REJECT_ACTION_ID,
    SubmitCommand,
    TokenDecodeError,
    is_user_authorized,
    parse_action_command,
)
from timelog_approvals.background import run_async
from timelog_approvals.config import AppSettings, get_settings
from timelog_approvals.db import init_db, session_scope
from timelog_approvals.logging_config import configure_logging
from timelog_approvals.lookups import load_lookup_tables
from timelog_approvals.security import verify_headers
from timelog_approvals.tracker import YouTrackClient
from timelog_approvals.workflows import SUBMIT_CALLBACK_ID, build_intake_modal, parse_slash_command
from timelog_approvals.workflows.controller import Actuation, ApprovalController, WorkflowServices
from timelog_approvals.workflows.requests import SubmissionError, parse_action_kind, parse_submission

SLASH_COMMAND = "/timelog"


def _create_bolt_app(settings: AppSettings) -> SlackApp:
    """Initialise the Slack Bolt application using validated settings."""

    return SlackApp(
        token=settings.bot_token,
        signing_secret=settings.signing_secret,
        token_verification_enabled=False,
    )


def _build_services(settings: AppSettings) -> WorkflowServices:
    """Load the lookup tables and the tracker client once per process."""

    tables = load_lookup_tables(
        user_map_path=settings.user_map_path,
        work_types_path=settings.work_types_path,
    )
    tracker = YouTrackClient(
        base_url=settings.youtrack_url,
        token=settings.youtrack_token,
        timeout=settings.youtrack_timeout,
        work_item_limit=settings.work_item_limit,
    )
    return WorkflowServices(
        tracker=tracker,
        identities=tables.identities,
        work_types=tables.work_types,
        approval_channel_id=settings.approval_channel_id,
    )


def _register_error_handlers(flask_app: Flask) -> None:
    """Register a JSON error handler that attaches a trace identifier."""

    @flask_app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):  # type: ignore[override]
        trace_id = str(uuid4())
        flask_app.logger.exception(
            "Unhandled application error", extra={"trace_id": trace_id}, exc_info=error
        )
        response = jsonify({"error": "internal_server_error", "trace_id": trace_id})
        response.status_code = 500
        return response


def _open_modal(client, trigger_id: str, view: dict, logger) -> None:
    log = structlog.get_logger()
    try:
        client.views_open(trigger_id=trigger_id, view=view)
        log.info("intake_modal_opened")
    except SlackApiError as exc:  # pragma: no cover - network dependent
        error_code = exc.response.get("error") if getattr(exc, "response", None) is not None else str(exc)
        log.error("intake_modal_open_failed", error=error_code)
        logger.error("Failed to open time adjustment modal", extra={"error": error_code})


def _handle_timelog_command(ack, command, client, logger, services: WorkflowServices):
    trace_id = str(uuid4())
    bind_contextvars(trace_id=trace_id)
    log = structlog.get_logger().bind(trace_id=trace_id)

    try:
        log.info(
            "slash_command_received",
            command=command.get("command"),
            text=(command.get("text") or "").strip(),
            user_id=command.get("user_id"),
        )
        try:
            context = parse_slash_command(command.get("text") or "")
        except ValueError as exc:
            ack({"response_type": "ephemeral", "text": str(exc)})
            return

        view = build_intake_modal(context.action_kind, services.work_types)
        ack()
        run_async(_open_modal, client, command.get("trigger_id"), view, logger, trace_id=trace_id)
    finally:
        unbind_contextvars("trace_id")


def _handle_view_submission(ack, body, client, logger, services: WorkflowServices):
    trace_id = str(uuid4())
    bind_contextvars(trace_id=trace_id)
    log = structlog.get_logger().bind(trace_id=trace_id)

    try:
        view = body.get("view", {})
        user_id = body.get("user", {}).get("id")
        if not user_id:
            ack({"response_action": "errors", "errors": {"general": "We could not identify the requester."}})
            log.warning("missing_user_id")
            return

        try:
            action_kind = parse_action_kind(view.get("private_metadata", "{}"))
            time_request = parse_submission(
                {"values": view.get("state", {}).get("values", {})},
                action_kind=action_kind,
                requester_id=user_id,
                work_types=services.work_types,
            )
        except SubmissionError as exc:
            ack({"response_action": "errors", "errors": exc.errors})
            log.info("submission_invalid", user_id=user_id, errors=exc.errors)
            return

        ack({"response_action": "clear"})
        log.info(
            "submission_accepted",
            user_id=user_id,
            issue_id=time_request.issue_id,
            action_kind=time_request.action_kind.value,
        )
        controller = ApprovalController(client=client, services=services, logger=logger)
        run_async(controller.dispatch, SubmitCommand(request=time_request), trace_id=trace_id)
    finally:
        unbind_contextvars("trace_id")


def _post_ephemeral(client, *, channel_id: str | None, user_id: str, text: str, log) -> None:
    if not channel_id:
        return
    try:
        client.chat_postEphemeral(channel=channel_id, user=user_id, text=text)
    except SlackApiError as exc:
        log.warning("ephemeral_failed", error=str(exc))


def _handle_decision_action(ack, body, client, logger, services: WorkflowServices):
    trace_id = str(uuid4())
    bind_contextvars(trace_id=trace_id)
    log = structlog.get_logger().bind(trace_id=trace_id)

    try:
        actions = body.get("actions") or []
        try:
            action_payload = actions[0]
        except IndexError:
            ack({"response_type": "ephemeral", "text": "Unable to process this action payload."})
            return

        try:
            command = parse_action_command(action_payload.get("action_id", ""), action_payload.get("value", ""))
        except TokenDecodeError:
            ack({"response_type": "ephemeral", "text": "This action payload is invalid. Please ask for a new request."})
            log.warning("invalid_action_payload", action_id=action_payload.get("action_id"))
            return

        token = command.token
        log = log.bind(issue_id=token.issue_id, action_kind=token.action_kind.value)

        user_id = body.get("user", {}).get("id")
        if not user_id:
            ack({"response_type": "ephemeral", "text": "We could not identify the acting user."})
            log.warning("missing_user_id")
            return

        channel_id = (body.get("channel") or {}).get("id") or (body.get("container") or {}).get("channel_id")
        settings = get_settings()
        if not is_user_authorized(user_id, settings.approver_user_ids):
            ack()
            _post_ephemeral(
                client,
                channel_id=channel_id,
                user_id=user_id,
                text="You are not authorized to decide on time adjustments.",
                log=log,
            )
            log.warning("unauthorized_attempt", user_id=user_id)
            return

        if token.requester_id == user_id:
            ack()
            _post_ephemeral(
                client,
                channel_id=channel_id,
                user_id=user_id,
                text="You cannot decide on your own request.",
                log=log,
            )
            log.info("self_decision_blocked", user_id=user_id)
            return

        message = body.get("message") or {}
        message_ts = message.get("ts") or (body.get("container") or {}).get("message_ts")
        if not channel_id or not message_ts:
            ack({"response_type": "ephemeral", "text": "The approval message could not be identified."})
            log.warning("message_reference_missing", user_id=user_id)
            return

        ack()
        actuation = Actuation(
            approver_id=user_id,
            channel_id=channel_id,
            message_ts=message_ts,
            original_blocks=message.get("blocks"),
        )
        log.info("decision_received", decision=type(command).__name__, user_id=user_id)
        controller = ApprovalController(client=client, services=services, logger=logger)
        run_async(controller.dispatch, command, actuation, trace_id=trace_id)
    finally:
        unbind_contextvars("trace_id")


def _register_slash_handlers(bolt_app: SlackApp, services: WorkflowServices) -> None:
    @bolt_app.command(SLASH_COMMAND)
    def handle_timelog(ack, command, client, logger):
        _handle_timelog_command(ack=ack, command=command, client=client, logger=logger, services=services)


def _register_view_handlers(bolt_app: SlackApp, services: WorkflowServices) -> None:
    @bolt_app.view(SUBMIT_CALLBACK_ID)
    def handle_submission(ack, body, client, logger):
        _handle_view_submission(ack=ack, body=body, client=client, logger=logger, services=services)


def _register_action_handlers(bolt_app: SlackApp, services: WorkflowServices) -> None:
    @bolt_app.action(APPROVE_ACTION_ID)
    def handle_approve(ack, body, client, logger):
        _handle_decision_action(ack=ack, body=body, client=client, logger=logger, services=services)

    @bolt_app.action(REJECT_ACTION_ID)
    def handle_reject(ack, body, client, logger):
        _handle_decision_action(ack=ack, body=body, client=client, logger=logger, services=services)


_LOGGING_CONFIGURED = False


def _load_version() -> str:
    version_file = Path(__file__).resolve().parent / "VERSION"
    if version_file.exists():
        return version_file.read_text(encoding="utf-8").strip()
    return "unknown"


def create_app(services: WorkflowServices | None = None) -> Flask:
    """Create and configure the Flask application."""

    global _LOGGING_CONFIGURED
    if not _LOGGING_CONFIGURED:
        configure_logging()
        _LOGGING_CONFIGURED = True

    settings = get_settings()
    init_db()
    if services is None:
        try:
            services = _build_services(settings)
        except (OSError, ValueError, ValidationError) as exc:
            raise RuntimeError(f"Unable to load lookup tables: {exc}") from exc

    bolt_app = _create_bolt_app(settings)
    handler = SlackRequestHandler(bolt_app)

    flask_app = Flask(__name__)
    flask_app.config["APP_VERSION"] = _load_version()
    flask_app.logger.setLevel("INFO")
    _register_error_handlers(flask_app)
    _register_slash_handlers(bolt_app, services)
    _register_view_handlers(bolt_app, services)
    _register_action_handlers(bolt_app, services)

    @flask_app.route("/slack/events", methods=["POST"])
    def slack_events():
        raw_body = request.get_data(as_text=True)
        if not verify_headers(signing_secret=settings.signing_secret, headers=request.headers, body=raw_body):
            response = jsonify({"error": "invalid_signature"})
            response.status_code = 401
            return response

        # Handlers ack straight away and push the slow work to run_async.
        return handler.handle(request)

    @flask_app.route("/healthz", methods=["GET"])
    def healthz():
        health: dict[str, object] = {"ok": True}
        health["version"] = flask_app.config.get("APP_VERSION", "unknown")
        health["work_types"] = len(services.work_types.labels)
        try:
            get_settings()
            health["config"] = "valid"
        except Exception as exc:  # pragma: no cover - settings are cached
            health["config"] = "invalid"
            health["config_error"] = str(exc)
            health["ok"] = False

        try:
            with session_scope() as session:
                session.execute(text("SELECT 1"))
            health["db"] = "up"
        except Exception as exc:
            health["db"] = "down"
            health["db_error"] = str(exc)
            health["ok"] = False

        status = 200 if health["ok"] else 503
        return jsonify(health), status

    return flask_app


if __name__ == "__main__":  # pragma: no cover - manual execution helper
    application = create_app()
    application.run(host="0.0.0.0", port=3000, debug=False)
