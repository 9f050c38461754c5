"""
Simulated Souls — Flask Application
Single-page text adventure: the page posts player actions, the server runs
the story turn on Gemini and asks the image relay for the scene artwork.
"""
import os
import time
import uuid
import threading

from flask import Flask, render_template, request, jsonify

from config import load_settings
from errors import http_status_for, user_message_for
from game_log import log, setup_logging
from image_client import ImageClient
from story_engine import StoryEngine

app = Flask(__name__)
app.secret_key = os.environ.get("SECRET_KEY", "simulated-souls-dev-key")

START_FAILED_MESSAGE = (
    "Failed to initialize the game. The AI storyteller might be busy or returned an unexpected response."
)
NO_RESULT_MESSAGE = (
    "The story took an unexpected turn, or the AI is pondering. Try a different action "
    "or check if the AI returned an empty response."
)
LOST_THREAD_LINE = "[The narrator seems to have lost their train of thought...]"
SILENCE_LINE = "[An ominous silence fills the air as your words echo unanswered...]"

# Active games, keyed by game id
_games = {}
_games_lock = threading.Lock()

_engine = None
_image_client = None


# =============================================================================
# HELPERS
# =============================================================================

def init_services(engine=None, image_client=None):
    """Install the story engine and image client (built from env when omitted)."""
    global _engine, _image_client
    settings = None
    if engine is None or image_client is None:
        settings = load_settings()
    _engine = engine or StoryEngine.from_settings(settings)
    _image_client = image_client or ImageClient.from_settings(settings)


def get_engine():
    if _engine is None:
        init_services(image_client=_image_client)
    return _engine


def get_image_client():
    global _image_client
    if _image_client is None:
        _image_client = ImageClient.from_settings(load_settings())
    return _image_client


def new_game(session):
    game = {
        "id": uuid.uuid4().hex[:12],
        "session": session,
        "transcript": "",
        "image_url": None,
        "lock": threading.Lock(),
        "created_at": time.time(),
        "turns": 0,
    }
    with _games_lock:
        _games[game["id"]] = game
    return game


def get_game(game_id):
    with _games_lock:
        return _games.get(game_id)


def game_view(game, scene_text=None, error=None):
    return {
        "game_id": game["id"],
        "transcript": game["transcript"],
        "scene_text": scene_text,
        "image_url": game["image_url"],
        "turns": game["turns"],
        "error": error,
    }


def illustrate(game, image_prompt):
    """Fetch artwork for the scene. Returns an error message, or None on success."""
    try:
        game["image_url"] = get_image_client().generate(image_prompt)
    except Exception as e:
        log(f"[Game] {game['id']}: image generation failed: {e}", "error")
        game["image_url"] = None
        return user_message_for(e)
    return None


# =============================================================================
# ROUTES — Pages
# =============================================================================

@app.route("/")
def index():
    """Main single-page app."""
    return render_template("index.html")


# =============================================================================
# ROUTES — Game API
# =============================================================================

@app.route("/api/game/start", methods=["POST"])
def start_game():
    """Open a new session and narrate the first scene."""
    log("[Game] Starting a new adventure")
    try:
        session, result = get_engine().start()
    except Exception as e:
        log(f"[Game] Error starting game: {e}", "error")
        return jsonify({"error": user_message_for(e)}), http_status_for(e)

    if result is None:
        return jsonify({"error": START_FAILED_MESSAGE}), 502

    game = new_game(session)
    game["transcript"] = result.scene_text
    game["turns"] = 1
    error = illustrate(game, result.image_prompt)
    return jsonify(game_view(game, scene_text=result.scene_text, error=error))


@app.route("/api/game/<game_id>")
def get_game_state(game_id):
    game = get_game(game_id)
    if game is None:
        return jsonify({"error": "Game not found"}), 404
    return jsonify(game_view(game))


@app.route("/api/game/<game_id>/action", methods=["POST"])
def player_action(game_id):
    """Play one turn: the player's action in, the next scene (and artwork) out."""
    data = request.get_json(silent=True) or {}
    action = (data.get("action") or "").strip()
    if not action:
        return jsonify({"error": "Action is required"}), 400

    game = get_game(game_id)
    if game is None:
        return jsonify({"error": "Game not found"}), 404

    # One turn in flight per game
    if not game["lock"].acquire(blocking=False):
        return jsonify({"error": "The narrator is still speaking. Wait for the current turn to finish."}), 409

    try:
        game["transcript"] += f"\n\n> {action}\n"
        try:
            result = get_engine().send_turn(game["session"], action)
        except Exception as e:
            log(f"[Game] {game_id}: error processing action: {e}", "error")
            game["transcript"] += f"\n\n{SILENCE_LINE}"
            return jsonify(game_view(game, error=user_message_for(e))), http_status_for(e)

        if result is None:
            game["transcript"] += f"\n\n{LOST_THREAD_LINE}"
            return jsonify(game_view(game, error=NO_RESULT_MESSAGE))

        game["transcript"] += f"\n{result.scene_text}"
        game["turns"] += 1
        error = illustrate(game, result.image_prompt)
        return jsonify(game_view(game, scene_text=result.scene_text, error=error))
    finally:
        game["lock"].release()


@app.route("/api/game/<game_id>", methods=["DELETE"])
def restart_game(game_id):
    """Drop a game and its session; the page starts over with /api/game/start."""
    with _games_lock:
        game = _games.pop(game_id, None)
    if game is None:
        return jsonify({"error": "Game not found"}), 404
    log(f"[Game] {game_id}: restarted after {game['turns']} turns")
    return jsonify({"status": "restarted"})


@app.route("/api/health")
def health():
    """Diagnostics: breaker state and which credentials are present."""
    settings = load_settings()
    engine = _engine
    return jsonify({
        "text_key_configured": bool(settings["gemini_api_key"]),
        "image_key_configured": bool(settings["image_api_key"]),
        "model": engine.model if engine else settings["gemini_model"],
        "fallback_model": engine.fallback_model if engine else settings["gemini_fallback_model"],
        "breaker": engine.breaker.snapshot() if engine else None,
        "active_games": len(_games),
    })


# =============================================================================
# MAIN
# =============================================================================

if __name__ == "__main__":
    setup_logging()
    port = int(os.environ.get("PORT", 5050))
    debug = os.environ.get("FLASK_ENV") == "development"
    app.run(host="0.0.0.0", port=port, debug=debug)
