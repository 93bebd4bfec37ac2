import threading
from typing import Any, Dict, Tuple

from flask import Flask, jsonify, request
from werkzeug.serving import BaseWSGIServer, make_server

from mcp_bonding_curve import config
from mcp_bonding_curve import launch_manager
from mcp_bonding_curve.errors import InvalidInputError, LaunchpadError, UnknownLaunchError
from mcp_bonding_curve.rate_limiter import RateLimiter

from mcp.server.fastmcp.utilities.logging import get_logger
logger = get_logger(__name__)


app = Flask(__name__)

quote_limiter = RateLimiter()

MAX_AMOUNT = 10**36

# --- CORS Headers ---

def get_cors_headers(origin: str) -> Dict[str, str]:
    """Get CORS headers with origin validation."""
    allowed_origin = "*"
    if "*" not in config.CORS_ALLOWED_ORIGINS:
        if origin in config.CORS_ALLOWED_ORIGINS:
            allowed_origin = origin
        else:
            allowed_origin = config.CORS_ALLOWED_ORIGINS[0] if config.CORS_ALLOWED_ORIGINS else "null"

    return {
        'Access-Control-Allow-Origin': allowed_origin,
        'Access-Control-Allow-Methods': 'GET, OPTIONS',
        'Access-Control-Allow-Headers': 'Content-Type',
        'Access-Control-Max-Age': '3600',
        'Access-Control-Allow-Credentials': 'false'
    }


def _parse_amount() -> int:
    raw = request.args.get("amount")
    if raw is None:
        raise InvalidInputError("amount query parameter is required")
    try:
        amount = int(raw)
    except ValueError:
        raise InvalidInputError("amount must be an integer in base units")
    if amount <= 0 or amount > MAX_AMOUNT:
        raise InvalidInputError("amount is out of range")
    return amount


def _respond(handler) -> Tuple[Any, int, Dict[str, str]]:
    """Runs a read handler with rate limiting and maps protocol errors to HTTP codes."""
    cors_headers = get_cors_headers(request.headers.get('Origin', '*'))
    client = request.remote_addr or "unknown"
    if not quote_limiter.check(client):
        return jsonify({"error": "RateLimited", "message": "Too many requests"}), 429, cors_headers
    try:
        with launch_manager.launchpad_lock:
            body = handler()
        return jsonify(body), 200, cors_headers
    except UnknownLaunchError as e:
        return jsonify({"error": e.code, "message": str(e)}), 404, cors_headers
    except InvalidInputError as e:
        return jsonify({"error": e.code, "message": str(e)}), 400, cors_headers
    except LaunchpadError as e:
        logger.warning(f"Quote API request rejected: [{e.code}] {e}")
        return jsonify({"error": e.code, "message": str(e)}), 409, cors_headers
    except Exception as e:
        logger.exception(f"Unexpected error in quote API: {e}")
        return jsonify({"error": "Internal", "message": "An unexpected server error occurred"}), 500, cors_headers


# --- Flask Routes ---

@app.route('/launches/<token>/quote/buy', methods=['OPTIONS'])
@app.route('/launches/<token>/quote/sell', methods=['OPTIONS'])
@app.route('/launches/<token>/price', methods=['OPTIONS'])
@app.route('/launches/<token>/progress', methods=['OPTIONS'])
def handle_options(token: str) -> Tuple[str, int, Dict[str, str]]:
    """Handles CORS preflight requests."""
    return '', 204, get_cors_headers(request.headers.get('Origin', '*'))


@app.route('/launches/<token>/quote/buy', methods=['GET'])
def get_buy_quote(token: str):
    """Quote of spending `amount` of the raised asset on `token`."""
    return _respond(lambda: launch_manager.get_launchpad().helper.quote_buy(token, _parse_amount()).model_dump())


@app.route('/launches/<token>/quote/sell', methods=['GET'])
def get_sell_quote(token: str):
    """Quote of selling `amount` tokens back to the curve."""
    return _respond(lambda: launch_manager.get_launchpad().helper.quote_sell(token, _parse_amount()).model_dump())


@app.route('/launches/<token>/price', methods=['GET'])
def get_price(token: str):
    def handler():
        price = launch_manager.get_launchpad().helper.current_price(token)
        # exact ratio as strings; the float is for display only
        return {
            "token": token,
            "numerator": str(price.numerator),
            "denominator": str(price.denominator),
            "price": float(price),
        }
    return _respond(handler)


@app.route('/launches/<token>/progress', methods=['GET'])
def get_progress(token: str):
    return _respond(lambda: launch_manager.get_launchpad().helper.progress_to_goal(token).model_dump(mode='json'))


# --- Serving ---

def start_quote_api(host: str = '0.0.0.0', port: int = config.QUOTE_API_PORT) -> BaseWSGIServer:
    """
    Serves the quote API from a daemon thread of the current process.

    The MCP server calls this at startup so both surfaces share one launchpad. Nothing
    here may print to stdout, which carries the stdio transport.

    Returns:
        The running WSGI server; call shutdown() on it to stop serving.
    """
    launch_manager.get_launchpad()
    server = make_server(host, port, app, threaded=True)
    thread = threading.Thread(target=server.serve_forever, name="quote-api", daemon=True)
    thread.start()
    logger.info(f"Quote API listening on {host}:{server.server_port}")
    return server


# --- Main Execution (quote API alone, for local development) ---
if __name__ == '__main__':
    server = start_quote_api()
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        logger.info("Quote API shutdown requested by user")
    finally:
        server.shutdown()
        server.server_close()
