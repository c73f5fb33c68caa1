"""
Meeting transcription pipeline: normalize uploaded audio to 16 kHz mono WAV, run speech-to-text,
summarize the transcript, store both on the meeting, index the transcript for chat, and delete the audio.
"""
import logging
import os
import subprocess
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from app.core.config import settings
from app.core.openai_client import complete, get_openai_client, llm_available
from app.db.store import RelationalStore
from app.prompts.loader import get_system_prompt, get_user_prompt
from .chunker import split_text
from .classifier import CATEGORY_MEETING
from .errors import AudioConversionError, MeetingNotFoundError, TranscriptionError
from .indexer import ChunkDocument, SOURCE_MEETING, VectorStore
from .snapshot import run_command

logger = logging.getLogger(__name__)

CANONICAL_EXTENSION = ".wav"
SUMMARY_PREVIEW_LINES = 5
MAX_SUMMARY_INPUT_CHARS = 60_000

Runner = Callable[[Sequence[str], Optional[str]], str]
SpeechToText = Callable[[str], str]
LanguageModel = Callable[[str], str]


@dataclass
class TranscriptionPayload:
    meeting_id: str
    audio_path: str
    project_id: str


def meeting_file_path(meeting_id: str) -> str:
    """Pseudo file path under which a meeting's transcript chunks are stored in the vector store."""
    return f"meetings/{meeting_id}"


def build_meeting_documents(project_id: str, meeting_id: str, transcript: str, title: Optional[str] = None) -> List[ChunkDocument]:
    extra = {"meeting_id": meeting_id}
    if title:
        extra["meeting_title"] = title
    return [
        ChunkDocument(
            text=chunk,
            project_id=project_id,
            file_path=meeting_file_path(meeting_id),
            chunk_index=index,
            category=CATEGORY_MEETING,
            source=SOURCE_MEETING,
            extra=dict(extra),
        )
        for index, chunk in enumerate(split_text(transcript, CATEGORY_MEETING))
    ]


def canonical_audio_path(audio_path: str, sample_rate: int) -> str:
    stem, _ = os.path.splitext(audio_path)
    return f"{stem}.{sample_rate // 1000}k{CANONICAL_EXTENSION}"


def needs_conversion(audio_path: str) -> bool:
    return not audio_path.lower().endswith(CANONICAL_EXTENSION)


def convert_to_wav(
    input_path: str,
    output_path: str,
    *,
    sample_rate: Optional[int] = None,
    ffmpeg_binary: Optional[str] = None,
    runner: Runner = run_command,
) -> None:
    """Resample to sample_rate and downmix to mono with ffmpeg. Raises AudioConversionError."""
    if not os.path.isfile(input_path):
        raise AudioConversionError(f"Audio conversion failed: file not found: {input_path}")
    args = [
        ffmpeg_binary or settings.ffmpeg_binary,
        "-y",
        "-i", input_path,
        "-ar", str(sample_rate or settings.audio_sample_rate),
        "-ac", "1",
        "-f", "wav",
        output_path,
    ]
    try:
        runner(args, None)
    except subprocess.CalledProcessError as e:
        detail = (e.stderr or "").strip().splitlines()
        reason = detail[-1] if detail else f"ffmpeg exited with status {e.returncode}"
        raise AudioConversionError(f"Audio conversion failed: {reason}") from e
    except OSError as e:
        raise AudioConversionError(f"Audio conversion failed: {e}") from e


def transcribe_audio(audio_path: str) -> str:
    """Speech-to-text over a canonical WAV file with the configured Whisper model and fixed language."""
    oc = get_openai_client()
    with open(audio_path, "rb") as f:
        resp = oc.audio.transcriptions.create(
            model=settings.whisper_model,
            file=f,
            language=settings.whisper_language,
        )
    text = resp if isinstance(resp, str) else getattr(resp, "text", "")
    return (text or "").strip()


def fallback_summary(transcript: str) -> str:
    """Deterministic pseudo-summary: line count plus the first few non-blank lines."""
    lines = [ln for ln in (transcript or "").splitlines() if ln.strip()]
    preview = "\n".join(lines[:SUMMARY_PREVIEW_LINES])
    return f"Meeting Summary:\n\nTotal lines: {len(lines)}\nPreview:\n{preview}..."


def summarize_with_llm(transcript: str) -> str:
    system = get_system_prompt("meeting_summary")
    prompt = get_user_prompt("meeting_summary").replace("<<TRANSCRIPT>>", transcript[:MAX_SUMMARY_INPUT_CHARS])
    return complete(prompt, system=system)


def generate_meeting_summary(transcript: str, llm: Optional[LanguageModel] = None) -> str:
    """Summarize a transcript with the language model; without a model, or when it fails or returns
    nothing, fall back to fallback_summary instead of failing the job."""
    if llm is None:
        return fallback_summary(transcript)
    try:
        summary = (llm(transcript) or "").strip()
    except Exception:
        logger.warning("summary_generation_failed", exc_info=True)
        return fallback_summary(transcript)
    return summary or fallback_summary(transcript)


class MeetingTranscriber:
    """Runs one transcription job. Conversion and speech-to-text failures are fatal; summary failures
    degrade to the fallback; audio deletion and transcript indexing are best-effort."""

    def __init__(
        self,
        store: RelationalStore,
        vector_store: Optional[VectorStore] = None,
        *,
        speech_to_text: SpeechToText = transcribe_audio,
        llm: Optional[LanguageModel] = None,
        runner: Runner = run_command,
        sample_rate: Optional[int] = None,
    ):
        self.store = store
        self.vector_store = vector_store
        self.speech_to_text = speech_to_text
        if llm is None and llm_available():
            llm = summarize_with_llm
        self.llm = llm
        self.runner = runner
        self.sample_rate = sample_rate or settings.audio_sample_rate

    def process_transcription(self, payload: TranscriptionPayload) -> dict:
        meeting_id, audio_path = payload.meeting_id, payload.audio_path
        logger.info("transcription_started", extra={"meeting_id": meeting_id, "audio_path": audio_path})

        wav_path = audio_path
        converted = needs_conversion(audio_path)
        if converted:
            wav_path = canonical_audio_path(audio_path, self.sample_rate)
        try:
            if converted:
                convert_to_wav(audio_path, wav_path, sample_rate=self.sample_rate, runner=self.runner)
            try:
                transcript = self.speech_to_text(wav_path)
            except Exception as e:
                raise TranscriptionError(f"Transcription failed: {e}") from e
        finally:
            if converted:
                _remove_quietly(wav_path)

        summary = generate_meeting_summary(transcript, self.llm)

        if not self.store.update_meeting_transcript(meeting_id, transcript, summary):
            raise MeetingNotFoundError(f"Meeting {meeting_id} not found")

        _remove_quietly(audio_path)
        chunks = self._index_transcript(payload, transcript)

        logger.info("transcription_completed", extra={"meeting_id": meeting_id, "chars": len(transcript)})
        return {"meeting_id": meeting_id, "transcript_chars": len(transcript), "chunks_created": chunks}

    def _index_transcript(self, payload: TranscriptionPayload, transcript: str) -> int:
        if self.vector_store is None or not transcript.strip():
            return 0
        try:
            meeting = self.store.get_meeting(payload.meeting_id)
            docs = build_meeting_documents(
                payload.project_id, payload.meeting_id, transcript, title=meeting.title if meeting else None
            )
            self.vector_store.delete_file_embeddings(payload.project_id, [meeting_file_path(payload.meeting_id)])
            return self.vector_store.add_documents(docs)
        except Exception:
            logger.warning("transcript_indexing_failed", exc_info=True, extra={"meeting_id": payload.meeting_id})
            return 0


def _remove_quietly(path: str) -> None:
    try:
        if os.path.exists(path):
            os.remove(path)
    except OSError:
        logger.warning("audio_cleanup_failed", exc_info=True, extra={"path": path})
