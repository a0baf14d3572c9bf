#!/usr/bin/env python3
"""
Exam Proctoring Ledger - Flask HTTP Gateway
JSON endpoints forwarding to the XML-RPC proctoring server
"""

import os
import sys
import logging
import xmlrpc.client

from flask import Flask, request, jsonify

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import config

logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config["SERVER_URL"] = config.SERVER_URL


def get_server_proxy():
    return xmlrpc.client.ServerProxy(app.config["SERVER_URL"], allow_none=True)


def rpc_call(method: str, *args):
    """Call an RPC method on the proctoring server"""
    func = getattr(get_server_proxy(), method)
    return func(*args)


def _forward(method: str, *args):
    try:
        return jsonify(rpc_call(method, *args))
    except Exception as e:
        logger.error(f"RPC {method} failed: {e}")
        return jsonify({"success": False, "message": str(e)}), 502


def _forward_write(method: str):
    data = request.get_json(silent=True) or {}
    user = data.get("user")
    timestamp = data.get("timestamp")

    if not user or timestamp is None:
        return jsonify({"success": False, "message": "user and timestamp required"}), 400

    # Send timestamp as string to avoid XML-RPC i4 limits
    return _forward(method, user, str(timestamp))


@app.route('/api/set_start', methods=['POST'])
def api_set_start():
    """Record exam start"""
    return _forward_write('set_start')


@app.route('/api/add_violation', methods=['POST'])
def api_add_violation():
    """Record a violation"""
    return _forward_write('add_violation')


@app.route('/api/set_end', methods=['POST'])
def api_set_end():
    """Record exam end"""
    return _forward_write('set_end')


@app.route('/api/metadata/<user>')
def api_get_metadata(user):
    return _forward('get_metadata', user)


@app.route('/api/start_time/<user>')
def api_get_start_time(user):
    return _forward('get_start_time', user)


@app.route('/api/end_time/<user>')
def api_get_end_time(user):
    return _forward('get_end_time', user)


@app.route('/api/violations/<user>')
def api_get_violation_times(user):
    return _forward('get_violation_times', user)


@app.route('/api/kicked/<user>')
def api_is_kicked(user):
    return _forward('is_kicked', user)


@app.route('/api/status')
def api_get_status():
    return _forward('get_status')


if __name__ == '__main__':
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    print("Starting Flask gateway...")
    print(f"Server URL: {app.config['SERVER_URL']}")
    app.run(host=config.WEB_HOST, port=config.WEB_PORT, use_reloader=False)
