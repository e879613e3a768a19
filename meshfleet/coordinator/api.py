"""Coordinator HTTP API."""

import asyncio
import concurrent.futures
import logging
import threading
from typing import TYPE_CHECKING, Optional

from flask import Flask, jsonify, request
from pydantic import ValidationError
from werkzeug.exceptions import BadRequest, HTTPException, ServiceUnavailable
from werkzeug.serving import BaseWSGIServer, make_server

from ..errors import NodeNotFound, UnknownAction
from ..models import Command, HeartbeatRecord

if TYPE_CHECKING:
    from .service import Coordinator


logger = logging.getLogger(__name__)


class CoordinatorAPI:
    """
    Flask surface used by node agents, dashboards and the operator CLI.

    Flask runs in a worker thread; every handler hands its work to the
    coordinator's event loop and waits for the result, so registry and
    stats state is only read and written on the loop. Every error comes
    back as {"success": false, "error": ...}.
    """

    def __init__(self, coordinator: "Coordinator", request_timeout: float = 35.0):
        """
        Initialize coordinator API.

        Args:
            coordinator: Coordinator whose loop and services back the API
            request_timeout: Seconds to wait for the loop to answer
        """
        self.coordinator = coordinator
        self.request_timeout = request_timeout
        self.app = Flask(__name__)
        self._server: Optional[BaseWSGIServer] = None
        self._thread: Optional[threading.Thread] = None
        self._setup_routes()

    def _run(self, coro):
        """Run a coroutine on the coordinator loop and wait for it."""
        loop = self.coordinator.loop
        if loop is None or loop.is_closed():
            coro.close()
            raise ServiceUnavailable("Coordinator is not running")
        future = asyncio.run_coroutine_threadsafe(coro, loop)
        try:
            return future.result(timeout=self.request_timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            raise ServiceUnavailable(f"Coordinator did not answer within {self.request_timeout}s")

    @staticmethod
    def _json_body() -> dict:
        """Request JSON body; a missing body is empty, anything but an object is rejected."""
        data = request.get_json(silent=True)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise BadRequest("JSON object body required")
        return data

    def _setup_routes(self):
        """Set up Flask routes."""

        @self.app.errorhandler(NodeNotFound)
        def node_not_found(e):
            return jsonify({"success": False, "error": str(e)}), 404

        @self.app.errorhandler(UnknownAction)
        def unknown_action(e):
            return jsonify({"success": False, "error": str(e)}), 400

        @self.app.errorhandler(HTTPException)
        def http_error(e):
            return jsonify({"success": False, "error": e.description}), e.code

        @self.app.errorhandler(Exception)
        def internal_error(e):
            logger.error(f"Unhandled error on {request.method} {request.path}: {e}")
            return jsonify({"success": False, "error": str(e)}), 500

        @self.app.route('/health', methods=['GET'])
        def health():
            """Liveness check."""
            return jsonify({
                "status": "healthy",
                "nodes": self._run(self.coordinator.hub.get_node_counts()),
            })

        @self.app.route('/status', methods=['GET'])
        def status():
            """Coordinator status; node agents probe this during discovery."""
            return jsonify(self._run(self.coordinator.hub.get_status()))

        @self.app.route('/nodes', methods=['GET'])
        def list_nodes():
            return jsonify(self._run(self.coordinator.hub.get_nodes()))

        @self.app.route('/stats', methods=['GET'])
        def stats():
            return jsonify(self._run(self.coordinator.hub.get_stats()))

        @self.app.route('/stats/performance', methods=['GET'])
        def performance():
            minutes = request.args.get('minutes', default=30, type=float)
            return jsonify(self._run(self.coordinator.hub.get_performance(minutes)))

        @self.app.route('/topology', methods=['GET'])
        def topology():
            return jsonify(self._run(self.coordinator.hub.get_topology()))

        @self.app.route('/nodes/register', methods=['POST'])
        def register():
            """
            Register a node.

            Expected JSON body:
            {
                "nodeId": "<id>",
                "address": "<mesh address>",  // optional, defaults to the caller address
                "hostname": "...", ...
            }
            """
            data = self._json_body()
            if not data.get('nodeId'):
                return jsonify({"success": False, "error": "nodeId required"}), 400

            data.setdefault('address', request.remote_addr)
            try:
                node = self._run(self.coordinator.register_node(data))
            except HTTPException:
                raise
            except Exception as e:
                logger.error(f"Error registering node: {e}")
                return jsonify({"success": False, "error": str(e)}), 500

            return jsonify({"success": True, "node": node.to_wire()})

        @self.app.route('/nodes/<node_id>/heartbeat', methods=['POST'])
        def heartbeat(node_id):
            """Ingest a heartbeat; the response carries queued commands."""
            data = self._json_body()
            try:
                record = HeartbeatRecord.model_validate(data)
            except ValidationError as e:
                return jsonify({"success": False, "error": e.errors()[0]['msg']}), 400

            commands = self._run(self.coordinator.ingest_heartbeat(node_id, record))
            return jsonify({
                "success": True,
                "commands": [c.model_dump(mode="json") for c in commands],
            })

        @self.app.route('/nodes/<node_id>/status', methods=['POST'])
        def node_status(node_id):
            data = self._json_body()
            self._run(self.coordinator.registry.update_status(node_id, data))
            return jsonify({"success": True})

        @self.app.route('/nodes/<node_id>/diagnostics', methods=['POST'])
        def diagnostics(node_id):
            data = self._json_body()
            self._run(self.coordinator.registry.record_diagnostics(node_id, data))
            return jsonify({"success": True})

        @self.app.route('/nodes/<node_id>/action', methods=['POST'])
        def node_action(node_id):
            """
            Execute a node action.

            Expected JSON body: {"action": "ping" | "disconnect" | "reconnect" | "restart"}
            """
            data = self._json_body()
            action = data.get('action')
            if not action:
                return jsonify({"success": False, "error": "action required"}), 400

            try:
                result = self._run(self.coordinator.node_action(node_id, action))
            except (NodeNotFound, UnknownAction, HTTPException):
                raise
            except Exception as e:
                logger.error(f"Failed to execute action {action} on node {node_id}: {e}")
                return jsonify({"success": False, "error": str(e)}), 500

            return jsonify({"success": True, "result": result})

        @self.app.route('/nodes/<node_id>/commands', methods=['POST'])
        def queue_command(node_id):
            """
            Queue a command for the node's next heartbeat response.

            Expected JSON body: {"type": "update_config", "config": {...}}
            """
            data = self._json_body()
            try:
                command = Command.model_validate(data)
            except ValidationError as e:
                return jsonify({"success": False, "error": e.errors()[0]['msg']}), 400

            self._run(self.coordinator.registry.queue_command(node_id, command))
            return jsonify({"success": True}), 202

    def start(self, host: str, port: int):
        """
        Bind and serve in a background thread.

        Binding happens before this returns, so a busy port raises here.
        """
        self._server = make_server(host, port, self.app, threaded=True)
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            name="meshfleet-http",
            daemon=True
        )
        self._thread.start()
        logger.info(f"HTTP API listening on http://{host}:{port}")

    def stop(self):
        if self._server is not None:
            self._server.shutdown()
            self._server = None
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
