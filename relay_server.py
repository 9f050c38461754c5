"""
Simulated Souls — Image Relay
Small Flask app that forwards image prompts to Cloudflare Workers AI so the
browser never calls the provider directly (no CORS trouble, key stays here).
"""
import os
import base64
from datetime import datetime, timezone

import requests
from flask import Flask, request, jsonify
from dotenv import load_dotenv

from game_log import log, setup_logging

load_dotenv()

app = Flask(__name__)

# =============================================================================
# CONFIG
# =============================================================================

CLOUDFLARE_API_BASE = "https://api.cloudflare.com/client/v4/accounts"
DEFAULT_IMAGE_MODEL = "@cf/bytedance/stable-diffusion-xl-lightning"
STYLE_SUFFIX = "epic fantasy art, detailed, cinematic lighting, high quality"
GENERATION_PARAMS = {
    "num_steps": 20,
    "guidance": 7.5,
    "width": 1024,
    "height": 1024,
}
UPSTREAM_TIMEOUT = 120


def relay_settings():
    return {
        "api_key": os.environ.get("CLOUDFLARE_API_KEY", ""),
        "account_id": os.environ.get("CLOUDFLARE_ACCOUNT_ID", ""),
        "auth_email": os.environ.get("CLOUDFLARE_AUTH_EMAIL", ""),
        "model": os.environ.get("CLOUDFLARE_IMAGE_MODEL", "") or DEFAULT_IMAGE_MODEL,
    }


def _upstream_headers(settings):
    # Global API keys need the account email; API tokens go in a bearer header.
    if settings["auth_email"]:
        return {
            "X-Auth-Email": settings["auth_email"],
            "X-Auth-Key": settings["api_key"],
            "Content-Type": "application/json",
        }
    return {
        "Authorization": f"Bearer {settings['api_key']}",
        "Content-Type": "application/json",
    }


def _to_data_uri(response):
    """Turn a Workers AI image response into a data URI.

    Binary models answer with raw image bytes; others wrap base64 in JSON
    under result.image.
    """
    content_type = response.headers.get("Content-Type", "image/png").split(";")[0].strip()
    if content_type == "application/json":
        data = response.json()
        image_b64 = (data.get("result") or {}).get("image")
        if not image_b64:
            raise ValueError(f"No image in Cloudflare response: {str(data)[:200]}")
        return f"data:image/png;base64,{image_b64}"

    if not content_type.startswith("image/"):
        content_type = "image/png"
    b64 = base64.b64encode(response.content).decode("utf-8")
    return f"data:{content_type};base64,{b64}"


@app.after_request
def add_cors_headers(response):
    response.headers["Access-Control-Allow-Origin"] = "*"
    response.headers["Access-Control-Allow-Headers"] = "Content-Type"
    response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
    return response


# =============================================================================
# ROUTES
# =============================================================================

@app.route("/api/status")
def status():
    """Debug endpoint to check configuration."""
    settings = relay_settings()
    return jsonify({
        "hasApiKey": bool(settings["api_key"]),
        "accountId": settings["account_id"],
        "server": "Cloudflare AI Proxy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    })


@app.route("/api/generate-image", methods=["POST", "OPTIONS"])
def generate_image():
    """Generate one image for a prompt and return it as {"imageUrl": ...}."""
    if request.method == "OPTIONS":
        return "", 204

    data = request.get_json(silent=True) or {}
    prompt = data.get("prompt")
    if not isinstance(prompt, str) or not prompt.strip():
        return jsonify({"error": "Prompt is required"}), 400

    settings = relay_settings()
    if not settings["api_key"]:
        return jsonify({"error": "Cloudflare API key not configured"}), 500

    endpoint = f"{CLOUDFLARE_API_BASE}/{settings['account_id']}/ai/run/{settings['model']}"
    payload = {"prompt": f"{prompt.strip()}, {STYLE_SUFFIX}", **GENERATION_PARAMS}

    try:
        response = requests.post(
            endpoint,
            headers=_upstream_headers(settings),
            json=payload,
            timeout=UPSTREAM_TIMEOUT,
        )

        if not response.ok:
            error_text = response.text
            log(f"[Relay] Cloudflare API error: {response.status_code} {error_text[:500]}", "error")
            return jsonify({
                "error": f"Cloudflare API error: {response.status_code} {response.reason}",
                "details": error_text,
            }), response.status_code

        image_url = _to_data_uri(response)
    except (requests.RequestException, ValueError) as e:
        log(f"[Relay] Error generating image: {e}", "error")
        return jsonify({"error": "Internal server error", "details": str(e)}), 500

    log(f"[Relay] Image generated ({len(image_url)} chars)")
    return jsonify({"imageUrl": image_url})


# =============================================================================
# MAIN
# =============================================================================

if __name__ == "__main__":
    setup_logging()
    port = int(os.environ.get("RELAY_PORT", 3001))
    log(f"[Relay] Cloudflare AI proxy running at http://localhost:{port}")
    app.run(host="0.0.0.0", port=port)
