"""
LLM 调用

关系推断（analyzer=llm）和表结构分析使用，两者都要求模型输出 JSON。

提供商：
- ollama：本地 /api/chat 接口（httpx）
- openai / qwen / kimi / deepseek / zhipu / siliconflow：OpenAI 兼容接口（openai SDK）

服务层通过参数注入 completion 函数，测试中替换为假的实现。
"""

import json
import logging
import re
from functools import lru_cache
from typing import Any

import httpx
from openai import AsyncOpenAI

from portal.config import LLMEndpoint, get_settings
from portal.exceptions import LLMError

logger = logging.getLogger(__name__)

_THINK_BLOCK = re.compile(r"<think>.*?</think>", re.DOTALL)
_CODE_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


@lru_cache(maxsize=8)
def _openai_client(api_key: str, base_url: str | None, timeout: float) -> AsyncOpenAI:
    return AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout)


async def chat_completion(
    prompt: str,
    system_prompt: str | None = None,
    temperature: float | None = None,
    max_tokens: int | None = None,
    json_mode: bool = False,
) -> str:
    """
    单轮对话补全

    Args:
        prompt: 用户消息
        system_prompt: 系统提示词
        temperature: 默认 settings.llm_temperature
        max_tokens: 默认 settings.llm_max_tokens
        json_mode: 要求模型只输出 JSON（ollama format=json / OpenAI response_format）

    Raises:
        LLMError: 提供商未知、缺少 API Key 或调用失败
    """
    settings = get_settings()
    try:
        endpoint = settings.get_llm_config()
    except ValueError as e:
        raise LLMError(str(e)) from e

    messages = [{"role": "user", "content": prompt}]
    if system_prompt:
        messages.insert(0, {"role": "system", "content": system_prompt})

    options = {
        "temperature": settings.llm_temperature if temperature is None else temperature,
        "max_tokens": max_tokens or settings.llm_max_tokens,
        "json_mode": json_mode,
        "timeout": settings.llm_timeout,
    }

    if endpoint.provider != "ollama" and not endpoint.api_key:
        raise LLMError(f"{endpoint.provider.upper()}_API_KEY 未配置")

    try:
        if endpoint.provider == "ollama":
            return await _ollama_chat(endpoint, messages, **options)
        return await _openai_chat(endpoint, messages, **options)
    except httpx.HTTPError as e:
        logger.error(f"LLM 请求失败 ({endpoint.provider}/{endpoint.model}): {type(e).__name__}")
        raise LLMError(f"LLM call failed: {type(e).__name__}") from e
    except Exception as e:
        logger.error(f"LLM 调用异常 ({endpoint.provider}/{endpoint.model}): {e}")
        raise LLMError(f"LLM call failed: {type(e).__name__}") from e


async def _ollama_chat(
    endpoint: LLMEndpoint,
    messages: list[dict[str, str]],
    *,
    temperature: float,
    max_tokens: int,
    json_mode: bool,
    timeout: float,
) -> str:
    body: dict[str, Any] = {
        "model": endpoint.model,
        "messages": messages,
        "stream": False,
        "options": {"temperature": temperature, "num_predict": max_tokens},
    }
    if json_mode:
        body["format"] = "json"

    async with httpx.AsyncClient(base_url=endpoint.base_url or "", timeout=timeout) as client:
        response = await client.post("/api/chat", json=body)
        response.raise_for_status()
        return response.json()["message"]["content"]


async def _openai_chat(
    endpoint: LLMEndpoint,
    messages: list[dict[str, str]],
    *,
    temperature: float,
    max_tokens: int,
    json_mode: bool,
    timeout: float,
) -> str:
    client = _openai_client(endpoint.api_key or "", endpoint.base_url, timeout)
    extra: dict[str, Any] = {}
    if json_mode:
        extra["response_format"] = {"type": "json_object"}

    response = await client.chat.completions.create(
        model=endpoint.model,
        messages=messages,
        temperature=temperature,
        max_tokens=max_tokens,
        **extra,
    )
    return response.choices[0].message.content or ""


def parse_json_response(content: str) -> Any:
    """
    从模型输出中取出 JSON

    去掉 <think> 推理段落和 markdown 代码块后解析。

    Raises:
        LLMError: 不是合法的 JSON
    """
    text = _THINK_BLOCK.sub("", content)
    fenced = _CODE_FENCE.search(text)
    if fenced:
        text = fenced.group(1)
    try:
        return json.loads(text.strip())
    except json.JSONDecodeError as e:
        raise LLMError(f"LLM returned invalid JSON: {e.msg}") from e
