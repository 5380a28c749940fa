import logging
import os

from flask import Flask, jsonify, request
from pydantic import ValidationError

from controlplane import config
from controlplane.api import FlowApiService
from controlplane.errors import (
    AuthenticationFailure,
    ConflictFailure,
    FlowClientError,
    ResolutionFailure,
    TransientTransportFailure,
    TransportError,
    ValidationFailure,
)
from controlplane.lifecycle import ServiceState
from controlplane.models import Position, ProcessGroupConfiguration, UserCredentials, UserMappingUpdate
from controlplane.verification import ConfigVerifier
from mgmt.mapping import UserProcessGroupMappingService
from mgmt.models import UserType
from mgmt.user_session import UserSessionService

logger = logging.getLogger(__name__)

CONFLICT_RETRY_ATTEMPTS = 3

_LIFECYCLE_ACTIONS = ("start", "stop", "enable", "disable")


def _status_for(error: FlowClientError) -> int:
    if isinstance(error, ValidationFailure):
        return 400
    if isinstance(error, AuthenticationFailure):
        return 401
    if isinstance(error, ResolutionFailure):
        return 404
    if isinstance(error, ConflictFailure):
        return 409
    if isinstance(error, TransientTransportFailure):
        return 502
    if isinstance(error, TransportError) and error.status and 400 <= error.status < 600:
        return error.status
    return 502


def error_response(error: FlowClientError):
    status = _status_for(error)
    return jsonify({"error": str(error), "status": status, "details": error.data}), status


def with_conflict_retry(operation, attempts: int = CONFLICT_RETRY_ATTEMPTS):
    """Run ``operation`` again while the server reports a revision conflict."""
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except ConflictFailure:
            if attempt == attempts:
                raise
            logger.info(f"Revision conflict, retrying ({attempt}/{attempts})")


def _body() -> dict:
    return request.get_json(silent=True) or {}


def _position(body: dict):
    if body.get("position") is None:
        return None
    return Position.model_validate(body["position"])


def create_app(api=None, mapping_service=None, session_service=None) -> Flask:
    if api is None:
        api = FlowApiService()
    if mapping_service is None:
        mapping_service = UserProcessGroupMappingService(root_id_lookup=api.get_root_process_group_id)
    if api.identity_mapping is None:
        api.identity_mapping = mapping_service
    if session_service is None:
        session_service = UserSessionService(api, mapping_service, auto_refresh=True)
    verifier = ConfigVerifier(api)

    app = Flask(__name__)
    app.secret_key = os.getenv("FLOW_CONSOLE_SECRET_KEY", "flow-console-secret")
    app.extensions["flow_api"] = api
    app.extensions["user_mappings"] = mapping_service
    app.extensions["user_sessions"] = session_service

    @app.errorhandler(FlowClientError)
    def handle_flow_error(e):
        return error_response(e)

    @app.errorhandler(ValidationError)
    def handle_validation_error(e):
        details = e.errors(include_url=False, include_context=False, include_input=False)
        return jsonify({"error": "Invalid request body", "status": 400, "details": details}), 400

    @app.route("/health")
    def health():
        return jsonify({"status": "ok", "flow_api": config.FLOW_API_BASE_URL})

    @app.route("/api/flow/status")
    def flow_status():
        return jsonify(api.get_flow_status())

    # Process groups

    @app.route("/api/process-groups", methods=["GET"])
    def process_group_list():
        parent = request.args.get("parent_group_id")
        ui_only = request.args.get("ui_only", "true").lower() != "false"
        return jsonify(api.get_flow_process_groups(parent, ui_only))

    @app.route("/api/process-groups", methods=["POST"])
    def process_group_create():
        body = _body()
        created = api.create_process_group(
            body.get("parent_group_id"), body.get("name"), _position(body), body.get("client_id")
        )
        return jsonify(created), 201

    @app.route("/api/process-groups/<group_id>", methods=["GET"])
    def process_group_get(group_id):
        return jsonify(api.get_process_group(group_id))

    @app.route("/api/process-groups/<group_id>", methods=["DELETE"])
    def process_group_delete(group_id):
        return jsonify(api.delete_process_group(group_id, request.args.get("client_id")))

    @app.route("/api/process-groups/<group_id>/configuration", methods=["PUT"])
    def process_group_configure(group_id):
        body = _body()
        configuration = ProcessGroupConfiguration.model_validate(body)
        return jsonify(
            with_conflict_retry(
                lambda: api.update_process_group_configuration(group_id, configuration, body.get("client_id"))
            )
        )

    @app.route("/api/process-groups/<group_id>/duplicate", methods=["POST"])
    def process_group_duplicate(group_id):
        parent = _body().get("parent_group_id") or api.get_root_process_group_id()
        copied = api.copy_process_group(parent, [group_id])
        return jsonify(api.paste_process_group(parent, copied)), 201

    @app.route("/api/process-groups/<group_id>/<action>", methods=["POST"])
    def process_group_lifecycle(group_id, action):
        if action not in _LIFECYCLE_ACTIONS:
            raise ValidationFailure(f"Unknown process group action: {action}")
        return jsonify(getattr(api, f"{action}_process_group")(group_id))

    # Catalogs and processors

    @app.route("/api/processor-types")
    def processor_types():
        return jsonify(api.get_processor_types())

    @app.route("/api/controller-service-types")
    def controller_service_types():
        return jsonify(api.get_controller_service_types())

    @app.route("/api/processors", methods=["POST"])
    def processor_create():
        body = _body()
        created = api.create_processor(
            body.get("process_group_id"), body.get("type"), body.get("bundle"), _position(body), body.get("client_id")
        )
        return jsonify(created), 201

    # Controller services

    @app.route("/api/controller-services", methods=["GET"])
    def controller_service_list():
        return jsonify(api.get_controller_services(process_group_id=request.args.get("process_group_id")))

    @app.route("/api/controller-services", methods=["POST"])
    def controller_service_create():
        body = _body()
        created = api.create_controller_service(
            body.get("process_group_id"), body.get("type"), body.get("bundle"), body.get("client_id")
        )
        return jsonify(created), 201

    @app.route("/api/controller-services/<service_id>", methods=["GET"])
    def controller_service_get(service_id):
        return jsonify(api.get_controller_service(service_id))

    @app.route("/api/controller-services/<service_id>", methods=["PUT"])
    def controller_service_update(service_id):
        body = _body()
        component = body.get("component")
        if not isinstance(component, dict):
            raise ValidationFailure("A component object is required")
        return jsonify(
            with_conflict_retry(
                lambda: api.update_controller_service(service_id, component, body.get("client_id"))
            )
        )

    @app.route("/api/controller-services/<service_id>/references")
    def controller_service_references(service_id):
        return jsonify(api.get_controller_service_references(service_id))

    @app.route("/api/controller-services/<service_id>/enable", methods=["POST"])
    def controller_service_enable(service_id):
        body = _body()
        return jsonify(
            api.enable_controller_service(
                service_id,
                bool(body.get("cascade_references", False)),
                body.get("referencing_component_revisions"),
                body.get("client_id"),
            )
        )

    @app.route("/api/controller-services/<service_id>/disable", methods=["POST"])
    def controller_service_disable(service_id):
        body = _body()
        return jsonify(
            api.disable_controller_service(
                service_id, body.get("referencing_component_revisions"), body.get("client_id")
            )
        )

    @app.route("/api/controller-services/<service_id>/state", methods=["PUT"])
    def controller_service_state(service_id):
        body = _body()
        try:
            state = ServiceState(str(body.get("state", "")).upper())
        except ValueError as e:
            raise ValidationFailure(f"Unknown controller service state: {body.get('state')}") from e
        return jsonify(api.set_controller_service_state(service_id, state, body.get("client_id")))

    @app.route("/api/controller-services/<service_id>/verify", methods=["POST"])
    def controller_service_verify(service_id):
        body = _body()
        return jsonify(verifier.verify(service_id, body.get("properties"), body.get("attributes")))

    # User mappings

    @app.route("/api/users", methods=["GET"])
    def user_list():
        return jsonify(mapping_service.get_all_user_mappings())

    @app.route("/api/users", methods=["POST"])
    def user_create():
        body = _body()
        for key in ("username", "password", "process_group_id"):
            if not body.get(key):
                raise ValidationFailure(f"{key} is required")
        try:
            user_type = UserType(str(body.get("user_type", UserType.USER.value)).upper())
        except ValueError as e:
            raise ValidationFailure(f"Unknown user type: {body.get('user_type')}") from e
        process_group_name = body.get("process_group_name") or mapping_service.get_process_group_name(
            body["process_group_id"]
        )
        if body.get("permissions"):
            created = mapping_service.add_user_mapping(
                body["username"],
                body["password"],
                body["process_group_id"],
                process_group_name,
                body["permissions"],
                user_type,
            )
        else:
            created = mapping_service.create_user_with_default_permissions(
                body["username"], body["password"], body["process_group_id"], process_group_name, user_type
            )
        return jsonify(created), 201

    @app.route("/api/users/stats")
    def user_stats():
        return jsonify(mapping_service.get_process_group_stats())

    @app.route("/api/users/<username>", methods=["PUT"])
    def user_update(username):
        updates = UserMappingUpdate.model_validate(_body()).model_dump(exclude_none=True)
        if "user_type" in updates:
            try:
                updates["user_type"] = UserType(updates["user_type"].upper())
            except ValueError as e:
                raise ValidationFailure(f"Unknown user type: {updates['user_type']}") from e
        if not mapping_service.update_user_mapping(username, **updates):
            raise ResolutionFailure(f"User not found: {username}")
        return jsonify({"updated": username})

    @app.route("/api/users/<username>", methods=["DELETE"])
    def user_delete(username):
        if not mapping_service.remove_user_mapping(username):
            raise ResolutionFailure(f"User not found: {username}")
        return jsonify({"deleted": username})

    # Sessions

    @app.route("/api/sessions/login", methods=["POST"])
    def session_login():
        credentials = UserCredentials.model_validate(_body())
        user_id = _body().get("user_id") or credentials.username
        session = session_service.switch_user(user_id, credentials.username, credentials.password)
        return jsonify(session.to_dict())

    @app.route("/api/sessions/logout", methods=["POST"])
    def session_logout():
        session_service.logout()
        return jsonify({"logged_out": True})

    @app.route("/api/sessions/stats")
    def session_stats():
        return jsonify(session_service.get_session_stats())

    return app
