import re
import json
import base64
import logging
from typing import Any, Dict, List, Optional

import requests

import config


logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = """
你是一位專業的專利代理人與智慧財產權顧問助手。
你的職責是協助用戶管理專利組合，分析專利風險，提供年費維持建議。
請使用繁體中文 (zh-TW) 回答，保持專業、簡潔且精確。
""".strip()

EMPTY_REPLY = "抱歉，我現在無法回答您的問題。"
CONNECTION_ERROR_REPLY = "連線錯誤，請確認網路狀態或 API 配置 (API Key)。"

CONTEXT_LIMIT = 10

PATENT_RESPONSE_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "name": {"type": "STRING"},
        "patentee": {"type": "STRING"},
        "country": {"type": "STRING"},
        "status": {"type": "STRING"},
        "type": {"type": "STRING"},
        "appNumber": {"type": "STRING"},
        "pubNumber": {"type": "STRING"},
        "appDate": {"type": "STRING"},
        "pubDate": {"type": "STRING"},
        "duration": {"type": "STRING"},
        "annuityDate": {"type": "STRING"},
        "annuityYear": {"type": "NUMBER"},
        "inventor": {"type": "STRING"},
        "abstract": {"type": "STRING"},
    },
    "required": ["name"],
}

PATENT_JSON_CONFIG: Dict[str, Any] = {
    "responseMimeType": "application/json",
    "responseSchema": PATENT_RESPONSE_SCHEMA,
}


class GeminiError(RuntimeError):
    """Raised when the Gemini API cannot be reached or answers with an error."""


def clean_json(text: str) -> str:
    """Strip Markdown code fences and stray text around a JSON payload."""
    if not text:
        return ""

    # ```json ... ``` block first
    m = re.search(r"```json\s*([\s\S]*?)\s*```", text)
    if m:
        return m.group(1)

    # then any ``` ... ``` block
    m = re.search(r"```\s*([\s\S]*?)\s*```", text)
    if m:
        return m.group(1)

    s = re.sub(r"^```json\s*", "", text)
    s = re.sub(r"^```\s*", "", s)
    s = re.sub(r"\s*```$", "", s)
    return s.strip()


def _text_part(text: str) -> Dict[str, Any]:
    return {"text": text}


class GeminiClient:
    """Thin client for the generateContent REST endpoint."""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None,
                 timeout: Optional[float] = None, api_base: Optional[str] = None):
        self.api_key = config.GEMINI_API_KEY if api_key is None else api_key
        self.model = model or config.GEMINI_MODEL
        self.timeout = timeout or config.GEMINI_TIMEOUT
        self.api_base = (api_base or config.GEMINI_API_BASE).rstrip("/")
        self.session = requests.Session()

    @property
    def endpoint(self) -> str:
        return f"{self.api_base}/models/{self.model}:generateContent"

    def generate_content(
        self,
        contents: List[Dict[str, Any]],
        system_instruction: Optional[str] = None,
        generation_config: Optional[Dict[str, Any]] = None,
    ) -> str:
        if not self.api_key:
            raise GeminiError("Gemini API key is not configured")

        body: Dict[str, Any] = {"contents": contents}
        if system_instruction:
            body["systemInstruction"] = {"parts": [_text_part(system_instruction)]}
        if generation_config:
            body["generationConfig"] = generation_config

        try:
            r = self.session.post(
                self.endpoint,
                params={"key": self.api_key},
                json=body,
                timeout=self.timeout,
            )
            r.raise_for_status()
            payload = r.json()
        except (requests.RequestException, ValueError) as e:
            raise GeminiError(f"Gemini request failed: {e}") from e

        if not isinstance(payload, dict):
            raise GeminiError(f"Unexpected Gemini response: {type(payload).__name__}")
        candidates = payload.get("candidates") or []
        if not isinstance(candidates, list):
            raise GeminiError("Unexpected Gemini response: candidates is not a list")
        if not candidates:
            return ""
        first = candidates[0]
        content = first.get("content") if isinstance(first, dict) else None
        content = content or {}
        parts = content.get("parts") if isinstance(content, dict) else None
        if not isinstance(first, dict) or not isinstance(content, dict) or not isinstance(parts or [], list):
            raise GeminiError("Unexpected Gemini response: malformed candidate")
        return "".join(str(p.get("text") or "") for p in parts or [] if isinstance(p, dict))


def format_patent_context(patents: List[Dict[str, Any]], limit: int = CONTEXT_LIMIT) -> str:
    return "\n".join(
        f"[ID: {p.get('id', '')}, 名稱: {p.get('name', '')}, 狀態: {p.get('status', '')}, "
        f"國家: {p.get('country', '')}, 到期日: {p.get('annuityDate', '')}]"
        for p in patents[:limit]
    )


class ChatSession:
    """Multi-turn chat with the patent assistant. History lives in memory."""

    def __init__(self, client: Optional[GeminiClient] = None, system_instruction: str = SYSTEM_INSTRUCTION):
        self.client = client or GeminiClient()
        self.system_instruction = system_instruction
        self.history: List[Dict[str, Any]] = []

    def reset(self) -> None:
        self.history = []

    def send_message(self, message: str, context_patents: Optional[List[Dict[str, Any]]] = None) -> str:
        full_message = message
        if context_patents:
            full_message = f"當前專利上下文：\n{format_patent_context(context_patents)}\n\n用戶問題：{message}"

        user_turn = {"role": "user", "parts": [_text_part(full_message)]}
        try:
            reply = self.client.generate_content(
                self.history + [user_turn],
                system_instruction=self.system_instruction,
            )
        except GeminiError as e:
            logger.error("Gemini API Error: %s", e)
            return CONNECTION_ERROR_REPLY

        self.history.append(user_turn)
        self.history.append({"role": "model", "parts": [_text_part(reply)]})
        return reply or EMPTY_REPLY


_chat_session: Optional[ChatSession] = None


def get_chat_session() -> ChatSession:
    """Process-wide chat session for scripts and one-off calls.

    Every caller in the process shares this history, including every user of a
    running Streamlit server. The dashboard keeps its own ChatSession per browser
    session in st.session_state and must not use this one.
    """
    global _chat_session
    if _chat_session is None:
        _chat_session = ChatSession()
    return _chat_session


def send_message_to_gemini(message: str, context_patents: Optional[List[Dict[str, Any]]] = None) -> str:
    return get_chat_session().send_message(message, context_patents)


def _parse_json_reply(text: str) -> Optional[Dict[str, Any]]:
    cleaned = clean_json(text)
    if not cleaned:
        return None
    data = json.loads(cleaned)
    return data if isinstance(data, dict) else None


def parse_patent_from_text(text: str, client: Optional[GeminiClient] = None) -> Optional[Dict[str, Any]]:
    """Ask Gemini to structure free text into a patent record; None on any failure."""
    client = client or GeminiClient()
    try:
        reply = client.generate_content(
            [{"role": "user", "parts": [_text_part(f"請將以下專利資訊解析為 JSON 格式：\n{text}")]}],
            generation_config=PATENT_JSON_CONFIG,
        )
        return _parse_json_reply(reply)
    except (GeminiError, ValueError) as e:
        logger.error("Gemini Parse Text Error: %s", e)
        return None


def parse_patent_from_file(data: bytes, mime_type: str = "application/pdf",
                           client: Optional[GeminiClient] = None) -> Optional[Dict[str, Any]]:
    """Same as parse_patent_from_text but for a document sent inline (PDF by default)."""
    client = client or GeminiClient()
    parts = [
        {"inlineData": {"mimeType": mime_type, "data": base64.b64encode(data).decode("ascii")}},
        _text_part("請從此文件中提取專利資訊並轉換為 JSON 格式。"),
    ]
    try:
        reply = client.generate_content(
            [{"role": "user", "parts": parts}],
            generation_config=PATENT_JSON_CONFIG,
        )
        return _parse_json_reply(reply)
    except (GeminiError, ValueError) as e:
        logger.error("Gemini Parse File Error: %s", e)
        return None
