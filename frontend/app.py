"""Flask proxy for the innovation dashboard."""
import logging
import os

import requests
from flask import Flask, Response, jsonify, request
from flask_cors import CORS

app = Flask(__name__)
CORS(app)  # Enable CORS for all routes

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

BACKEND_URL = os.getenv("BACKEND_URL", "http://localhost:8000/api")  # FastAPI backend
REQUEST_TIMEOUT = 60  # seconds
BAD_REQUEST = 400
UNAUTHORIZED = 401
BAD_GATEWAY = 502
INPUT_STAGE = "input"
UNREACHABLE_MESSAGE = "Could not connect to the server. Please try again later."
INVALID_JSON_ERROR = "Invalid JSON response from backend server"
TOAST_MESSAGES = {
    UNAUTHORIZED: "Please sign in to submit problems.",
}


def toast(message: str, status_code: int) -> tuple[Response, int]:
    """Error payload that sends the dashboard back to the input stage."""
    return jsonify({"toast": message, "stage": INPUT_STAGE}), status_code


def _forward_headers() -> dict[str, str]:
    headers = {"Content-Type": "application/json"}
    authorization = request.headers.get("Authorization")
    if authorization:
        headers["Authorization"] = authorization
    return headers


def _error_message(response: requests.Response) -> str:
    if response.status_code in TOAST_MESSAGES:
        return TOAST_MESSAGES[response.status_code]
    try:
        data = response.json()
    except ValueError:
        return response.text or "Request failed"
    if isinstance(data, dict):
        detail = data.get("detail") or data.get("error")
        if isinstance(detail, str):
            return detail
        if isinstance(detail, list) and detail:
            return "Invalid request"
    return "Request failed"


def proxy(method: str, path: str, **kwargs) -> Response | tuple[Response, int]:
    """Forward a request to the backend and relay its JSON answer."""
    try:
        response = requests.request(
            method,
            f"{BACKEND_URL}{path}",
            headers=_forward_headers(),
            timeout=REQUEST_TIMEOUT,
            **kwargs,
        )
        response.raise_for_status()
    except requests.exceptions.HTTPError as e:
        logger.warning("Backend %s %s failed with %s", method, path, e.response.status_code)
        return toast(_error_message(e.response), e.response.status_code)
    except requests.exceptions.RequestException:
        logger.exception("Request failed")
        return toast(UNREACHABLE_MESSAGE, BAD_GATEWAY)

    try:
        return jsonify(response.json()), response.status_code
    except ValueError:
        logger.exception("Invalid JSON response: %s", response.text[:200])
        return toast(INVALID_JSON_ERROR, BAD_GATEWAY)


@app.route("/health")
def health_check() -> Response:
    """Health check endpoint."""
    return jsonify({"status": "healthy", "service": "flask-proxy"})


@app.route("/submit", methods=["POST"])
def submit() -> Response | tuple[Response, int]:
    """Proxy a problem submission to the backend."""
    if not request.is_json:
        return toast("Request must be JSON", BAD_REQUEST)

    data = request.get_json(silent=True) or {}
    description = str(data.get("description") or "").strip()
    if not description:
        return toast("Please describe the problem you want to solve.", BAD_REQUEST)

    payload = {
        "description": description,
        "title": data.get("title"),
        "category": data.get("category"),
    }
    return proxy("POST", "/problems/submit", json=payload)


@app.route("/problems")
def problems() -> Response | tuple[Response, int]:
    """List the caller's problems."""
    return proxy("GET", "/problems")


@app.route("/problems/<problem_id>/progress")
def progress(problem_id: str) -> Response | tuple[Response, int]:
    """Current progress of a submission, or a long-poll when ``wait`` is given."""
    wait = request.args.get("wait")
    if wait:
        return proxy("GET", f"/problems/{problem_id}/progress/wait", params={"timeout": wait})
    return proxy("GET", f"/problems/{problem_id}/progress")


@app.route("/problems/<problem_id>/dashboard")
def dashboard(problem_id: str) -> Response | tuple[Response, int]:
    """Ranked solutions of a finished submission."""
    return proxy("GET", f"/problems/{problem_id}/dashboard")


if __name__ == "__main__":
    app.run(port=int(os.getenv("FRONTEND_PORT", "3000")), debug=False)
