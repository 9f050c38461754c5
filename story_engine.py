"""
Simulated Souls — Story Engine
Runs the Dungeon Master conversation on Google Gemini.

Every turn goes through the circuit breaker and the retry controller
(resilience.py), may hop to a fallback model when the primary is
overloaded, and ends in the response parser.
"""
from google import genai
from google.genai import types

from errors import ServicesExhaustedError
from game_log import log
from resilience import CircuitBreaker, RetryController, classify_error
from response_parser import parse_turn_response

START_MESSAGE = "Start the adventure."

SYSTEM_INSTRUCTION = """You are the Dungeon Master of an open-ended text adventure. The player tells you what they do; you tell them what happens next and keep the world consistent with everything said so far.

Every reply must:
1. Narrate the scene or the outcome of the player's action in a few vivid, immersive paragraphs.
2. Give a prompt for an image generation model showing that moment. Keep it to 15-20 words, literal and visual: subjects, setting, lighting, mood. No story text, no names the image model could not know.

Your ENTIRE reply MUST be one JSON object with exactly two string keys, "sceneDescription" and "imagePrompt". Nothing before or after it.
Example:
{"sceneDescription": "The iron gate groans as you push it open. Beyond, a courtyard of cracked flagstones lies under a bruised sky, and somewhere a bell tolls once.", "imagePrompt": "Rusted iron gate opening onto ruined castle courtyard, cracked flagstones, stormy purple sky, distant bell tower"}

When the first message is "Start the adventure.", open the story with its first scene following these rules."""


def init_client(api_key, timeout_ms=None):
    """Initialize the Google GenAI client."""
    if not api_key:
        raise ValueError("GEMINI_API_KEY or GOOGLE_API_KEY must be set")
    http_options = types.HttpOptions(timeout=timeout_ms) if timeout_ms else None
    return genai.Client(api_key=api_key, http_options=http_options)


def chat_config():
    return types.GenerateContentConfig(
        system_instruction=SYSTEM_INSTRUCTION,
        response_mime_type="application/json",
    )


class StorySession:
    """One game's conversation: a Gemini chat plus the model it runs on.

    Turns on a session must not overlap; the web layer serializes them.
    """

    def __init__(self, chat, model):
        self.chat = chat
        self.model = model

    def history(self):
        return list(self.chat.get_history(curated=True))


class StoryEngine:
    """Conversation orchestrator: sessions, turns, fallback and error policy."""

    def __init__(self, client, model, fallback_model=None, breaker=None, retry=None,
                 classify=classify_error, deadline=None):
        self.client = client
        self.model = model
        self.fallback_model = fallback_model
        self.breaker = breaker or CircuitBreaker()
        self.retry = retry or RetryController(self.breaker, classify=classify)
        self.deadline = deadline

    @classmethod
    def from_settings(cls, settings, breaker=None):
        """Build the engine from config.load_settings() output."""
        client = init_client(settings["gemini_api_key"], settings.get("request_timeout_ms"))
        breaker = breaker or CircuitBreaker(
            failure_threshold=settings["breaker_threshold"],
            reset_timeout=settings["breaker_reset_timeout"],
        )
        retry = RetryController(
            breaker,
            max_retries=settings["max_retries"],
            base_delay=settings["base_delay"],
            max_delay=settings["max_delay"],
            backoff_factor=settings["backoff_factor"],
        )
        return cls(
            client,
            settings["gemini_model"],
            fallback_model=settings.get("gemini_fallback_model"),
            breaker=breaker,
            retry=retry,
            deadline=settings.get("turn_deadline"),
        )

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    def create_session(self, model=None, history=None):
        """Open a new chat. Called once per game start or restart."""
        model = model or self.model
        chat = self.client.chats.create(
            model=model,
            config=chat_config(),
            history=history or None,
        )
        return StorySession(chat, model)

    def _fork(self, session, model):
        """Fresh chat on another model carrying the session's story so far."""
        log(f"[Gemini] Opening fallback session on {model}")
        return self.create_session(model, history=session.history())

    def _adopt(self, session, forked):
        """Rebuild the session's own chat from a fallback chat's history."""
        session.chat = self.create_session(session.model, history=forked.history()).chat

    def _send(self, session, message):
        response = session.chat.send_message(message)
        return response.text

    # -------------------------------------------------------------------------
    # Turns
    # -------------------------------------------------------------------------

    def _model_chain(self, session):
        chain = [session.model]
        if self.fallback_model and self.fallback_model != session.model:
            chain.append(self.fallback_model)
        return chain

    def send_turn(self, session, action_text):
        """
        Send one player action and return the parsed reply.

        Tries the session's own model first. If the breaker refuses it, one
        hop is made to the fallback model; if that is refused too,
        ServicesExhaustedError is raised.

        Returns:
            TurnResult, or None when the model answered with an empty or
            malformed payload.
        """
        chain = self._model_chain(session)

        for hop, model in enumerate(chain):
            is_fallback = hop > 0
            if not self.breaker.admit():
                if not is_fallback and len(chain) > 1:
                    log(f"[Gemini] Circuit open for {model}, switching to fallback {chain[1]}", "warning")
                    continue
                log("[Gemini] Circuit open and no model left to try", "error")
                raise ServicesExhaustedError()

            if is_fallback:
                target = self._fork(session, model)
                raw = self.retry.execute(
                    lambda: self._send(target, action_text),
                    deadline=self.deadline,
                    label=model,
                )
                self._adopt(session, target)
            else:
                raw = self.retry.execute(
                    lambda: self._send(session, action_text),
                    escalate=self._escalation(session, action_text, chain),
                    deadline=self.deadline,
                    label=model,
                )
            return self._to_result(raw)

        raise ServicesExhaustedError()

    def _escalation(self, session, action_text, chain):
        """Single fallback attempt used when the primary's first try is overloaded."""
        if len(chain) < 2:
            return None
        fallback = chain[1]

        def escalate():
            log(f"[Gemini] {session.model} overloaded, trying {fallback} once")
            forked = self._fork(session, fallback)
            raw = self._send(forked, action_text)
            self._adopt(session, forked)
            return raw

        return escalate

    def _to_result(self, raw):
        if not raw or not raw.strip():
            log("[Gemini] Response text is empty.", "error")
            return None
        return parse_turn_response(raw)

    def start(self):
        """Open a session and play the opening turn.

        Returns:
            (session, TurnResult or None)
        """
        session = self.create_session()
        return session, self.send_turn(session, START_MESSAGE)
