"""
Wiring — builds the collaborators an entry point needs from config.

Core classes take their store, identity and backends as constructor
arguments; this module is the one place that reads config to create them.
Per-user objects (ConversationStore, SubscriptionGate, ...) are cheap and
are built per caller via the helpers on Services.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from mindgarden.assessment import AssessmentRecorder
from mindgarden.config import runtime_override
from mindgarden.conversations import ConversationStore
from mindgarden.dialogue.backends import GenerationBackend, GenerationParams, backend_from_config
from mindgarden.dialogue.client import DialogueClient
from mindgarden.dialogue.speech import (
    DeepgramTranscriber,
    GoogleSynthesizer,
    SpeechPlayer,
    Synthesizer,
    Transcriber,
    VoiceParams,
)
from mindgarden.dialogue.voice import ManualEntry, VoiceDialogueClient
from mindgarden.garden import GardenLayout, GardenProjector
from mindgarden.identity import IdentityProvider, StaticIdentity
from mindgarden.storage.backends import DocumentStore, make_backend
from mindgarden.subscription import SubscriptionGate

logger = logging.getLogger(__name__)


def setup_logging(cfg: dict):
    log_cfg = cfg.get("logging", {})
    level_name = runtime_override("log_level", None) or log_cfg.get("level", "INFO")
    level = getattr(logging, str(level_name).upper(), logging.INFO)
    log_file = log_cfg.get("file")

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )


@dataclass
class Services:
    documents: DocumentStore
    backend: GenerationBackend
    params: GenerationParams = field(default_factory=GenerationParams)
    transcriber: Transcriber | None = None
    synthesizer: Synthesizer | None = None
    voice: VoiceParams = field(default_factory=VoiceParams)
    layout: GardenLayout = field(default_factory=GardenLayout)
    identity_header: str = "X-User-Id"
    garden_prompt_delay: float = 1.0
    history_turns: int = 0

    def identity(self, user_id: str | None) -> IdentityProvider:
        return StaticIdentity(user_id)

    def conversations(self, identity: IdentityProvider) -> ConversationStore:
        return ConversationStore(self.documents, identity)

    def gate(self, identity: IdentityProvider) -> SubscriptionGate:
        return SubscriptionGate(self.documents, identity)

    def dialogue(self, identity: IdentityProvider) -> DialogueClient:
        return DialogueClient(
            self.backend,
            self.conversations(identity),
            params=self.params,
            history_turns=runtime_override("generation_history_turns", self.history_turns),
        )

    def voice_dialogue(
        self,
        identity: IdentityProvider,
        manual_entry: ManualEntry | None = None,
        player: SpeechPlayer | None = None,
    ) -> VoiceDialogueClient:
        if self.transcriber is None or self.synthesizer is None:
            raise RuntimeError("Speech services are not configured")
        return VoiceDialogueClient(
            self.dialogue(identity),
            self.transcriber,
            self.synthesizer,
            player=player,
            voice=self.voice,
            manual_entry=manual_entry,
        )

    def recorder(self, identity: IdentityProvider) -> AssessmentRecorder:
        delay = runtime_override("assessment_garden_prompt_delay", self.garden_prompt_delay)
        return AssessmentRecorder(self.conversations(identity), garden_prompt_delay=delay)

    def projector(self) -> GardenProjector:
        return GardenProjector(self.documents, layout=self.layout)


def build_services(cfg: dict) -> Services:
    storage_cfg = cfg.get("storage", {})
    backend_type = storage_cfg.get("backend", "sqlite")
    kwargs = {"path": storage_cfg.get("sqlite_path", "./data/mindgarden.db")} if backend_type == "sqlite" else {}
    documents = make_backend(backend_type, **kwargs)

    gen_cfg = cfg.get("generation", {})
    speech_cfg = cfg.get("speech", {})
    speech_timeout = float(speech_cfg.get("timeout", 30))

    transcriber = None
    if speech_cfg.get("stt_api_key"):
        transcriber = DeepgramTranscriber(
            api_key=speech_cfg["stt_api_key"],
            url=speech_cfg.get("stt_url", "https://api.deepgram.com"),
            language=speech_cfg.get("language", "en-US"),
            timeout=speech_timeout,
        )
    synthesizer = None
    if speech_cfg.get("tts_api_key"):
        synthesizer = GoogleSynthesizer(
            api_key=speech_cfg["tts_api_key"],
            url=speech_cfg.get("tts_url", "https://texttospeech.googleapis.com"),
            timeout=speech_timeout,
        )

    services = Services(
        documents=documents,
        backend=backend_from_config(gen_cfg),
        params=GenerationParams.from_config(gen_cfg),
        transcriber=transcriber,
        synthesizer=synthesizer,
        voice=VoiceParams(
            language=speech_cfg.get("language", "en-US"),
            pitch=float(speech_cfg.get("pitch", 1.0)),
            rate=float(speech_cfg.get("rate", 0.9)),
        ),
        layout=GardenLayout.from_config(cfg.get("garden", {})),
        identity_header=cfg.get("identity", {}).get("header", "X-User-Id"),
        garden_prompt_delay=float(cfg.get("assessment", {}).get("garden_prompt_delay", 1.0)),
        history_turns=int(gen_cfg.get("history_turns", 0)),
    )
    logger.info(
        "Services ready: store=%s generation=%s speech=%s",
        backend_type,
        services.backend,
        "enabled" if transcriber and synthesizer else "disabled",
    )
    return services
