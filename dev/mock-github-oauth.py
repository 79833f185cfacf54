#!/usr/bin/env python3
"""Mock GitHub OAuth + REST API server for local development.

Point the service at it with:
    GITHUB_OAUTH_BASE_URL=http://localhost:19480
    GITHUB_API_BASE_URL=http://localhost:19480
    GITHUB_CLIENT_ID=dev-client GITHUB_CLIENT_SECRET=dev-secret

Any code is accepted except "bad", which mimics GitHub's bad_verification_code.
"""

import sys
from urllib.parse import urlencode

from flask import Flask, jsonify, redirect, request

app = Flask(__name__)

_TOKEN = "gho_mocktoken"


@app.route("/login/oauth/authorize")
def authorize():
    """Skip the consent screen: bounce straight back with a code."""
    params = {"code": "mock-code", "state": request.args.get("state", "")}
    return redirect(f"{request.args.get('redirect_uri', '/')}?{urlencode(params)}")


@app.route("/login/oauth/access_token", methods=["POST"])
def access_token():
    if request.form.get("code") == "bad":
        return jsonify({"error": "bad_verification_code", "error_description": "The code passed is incorrect."})
    return jsonify({"access_token": _TOKEN, "token_type": "bearer", "scope": ""})


@app.route("/user")
def user():
    if request.headers.get("Authorization") != f"Bearer {_TOKEN}":
        return jsonify({"message": "Bad credentials"}), 401
    return jsonify({"id": 583231, "login": "octocat", "name": "The Octocat"})


@app.route("/healthz")
def health():
    """Health check endpoint."""
    return jsonify({"status": "ok"})


if __name__ == "__main__":
    print("Mock GitHub starting on http://0.0.0.0:19480", file=sys.stderr)
    app.run(host="0.0.0.0", port=19480, debug=False)
