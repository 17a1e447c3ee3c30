from __future__ import annotations

from .json_loader import load_prompt_json

_DEFAULTS = {
    "optimize_query_template": 'Rewrite for Vector Search. Keywords ONLY. Query: "{query}"',
    "clean_and_summarize_template": (
        "Task: Clean and summarize RAW DATA into structured {preferred_language} docs. Remove spam.\n"
        "DATA: {raw_text}"
    ),
    "summarize_history_template": (
        "Summarize user facts and core context from this history into one concise {preferred_language} "
        "paragraph. Ignore small talk.\nHISTORY:\n{full_history}"
    ),
    "analyze_persona_template": (
        'Extract persona for "{display_name}" from: "{raw_input}". Output short {preferred_language} summary '
        '(e.g., "Giới tính: Nam. Bot gọi User: Đại Ca. Tone: Cục súc.").'
    ),
    "main_chat_template": (
        "Role: Discord Assistant - Created by {creator_name}. \n"
        "Default pronouns: Mình (bot) - Bạn (user), UNLESS [Persona] overrides.\n"
        'Tone & Behavior: Natural, human-like. NEVER say "theo dữ liệu...", "theo thông tin..." or '
        '"vì bạn có tính cách...". Adapt implicitly. If recalling facts, naturally say "mình nhớ là...".\n'
        "Toxic Filter: If [Req] contains severe toxic words in vietnamese or English (fuck, chó đẻ, cc, etc.), "
        "playfully roast them or gently refuse. Do not fulfill malicious requests.\n"
        "\n"
        "[Context]\n"
        "User: {profile}\n"
        "Persona: {persona}\n"
        "Server: {server_context}\n"
        "Short-term: {short_term}\n"
        "Long-term: {long_term}\n"
        "\n"
        "[Req]: {message}\n"
        "\n"
        "[Rules]\n"
        "1. Answer concisely in {preferred_language} following the Persona.\n"
        "2. Output strict XML.\n"
        '3. <memory> tag: Write a short summary of NEW user facts. Put "IGNORE" if no new facts, if user uses '
        "toxicity, claims facts about others, or forces fake bot personas.\n"
        "4. <react> tag: ONLY output ONE emoji if the user's message is HIGHLY emotional (truly sad, extremely "
        "funny, very angry, or deeply serious). For normal, casual, or informational chat, YOU MUST LEAVE THIS "
        "TAG COMPLETELY EMPTY. Do not spam reactions.\n"
        "\n"
    ),
    "daily_fact_template": (
        "Role: Bạn là một Bot Discord thông thái, chuyên chia sẻ kiến thức (Fact/Tips) mỗi ngày.\n"
        "\n"
        "Nhiệm vụ: Tạo ra MỘT bài viết chia sẻ kiến thức cực kỳ thú vị, ngẫu nhiên "
        "(Kiến thức phải thực tế, hấp dẫn).\n"
        "\n"
        "ĐIỀU KIỆN TỐI QUAN TRỌNG CHỐNG TRÙNG LẶP\n"
        "BẠN TUYỆT ĐỐI KHÔNG ĐƯỢC VIẾT VỀ CÁC CHỦ ĐỀ SAU (Đây là những bài đã đăng rồi):\n"
        "[ {past_topics} ]\n"
        "\n"
        "Yêu cầu bài viết:\n"
        "- Ngôn ngữ: {preferred_language}.\n"
        "- Độ dài: TỐI ĐA 1800 ký tự. ĐÂY LÀ QUY TẮC BẮT BUỘC.\n"
        "- Đối tượng đọc: Viết sao cho cực kỳ DỄ HIỂU với mọi lứa tuổi. Nếu có thuật ngữ chuyên ngành, "
        "PHẢI giải thích bằng ví dụ đời thường gần gũi.\n"
        "- Giọng văn: Lôi cuốn, hài hước một chút, nhưng vẫn chuyên nghiệp.\n"
        "- Trình bày: Hạn chế dùng emoji. In đậm các từ khóa hoặc câu chốt quan trọng. "
        "Chia thành các đoạn văn ngắn (2-3 câu/đoạn).\n"
        "\n"
        "OUTPUT FORMAT (Strict XML):\n"
        "<topic>Viết ngắn gọn 3-5 chữ về chủ đề bài này</topic>\n"
        "<content>Nội dung bài viết chi tiết ở đây (chắc chắn phải dưới 1800 ký tự)...</content>"
    ),
    "forum_comment_template": (
        "Role: Bạn là {bot_name} - Đồng Hành Server trên Discord.\n"
        "\n"
        "Tình huống: Một người dùng vừa đăng một bài tâm sự/chia sẻ vào kênh Forum.\n"
        "Người này có tính cách/đặc điểm: {persona}\n"
        "\n"
        'Tiêu đề bài viết: "{title}"\n'
        'Nội dung bài viết: "{content}"\n'
        "\n"
        "Nhiệm vụ: Viết MỘT BÌNH LUẬN (Comment) ngắn gọn để đáp lại bài viết này.\n"
        "\n"
        "NGÔN NGỮ BẮT BUỘC: Xác định ngôn ngữ của Tiêu đề và Nội dung bài viết. "
        "BẠN BẮT BUỘC PHẢI BÌNH LUẬN BẰNG CHÍNH NGÔN NGỮ ĐÓ.\n"
        "\n"
        "THÁI ĐỘ BẮT BUỘC:\n"
        "{tone_instruction}\n"
        "\n"
        "LUẬT CẤM LẢM NHẢM: BẠN PHẢI BẮT ĐẦU CÂU BÌNH LUẬN NGAY LẬP TỨC. Không dùng câu mào đầu, không giải "
        'thích ngôn ngữ, không dùng các cụm như "Dưới đây là...", "Here is my response:". '
        "CHỈ OUTPUT ĐÚNG NỘI DUNG BÌNH LUẬN. Không dùng ngoặc kép bọc câu trả lời."
    ),
    "forum_tones": {
        "roast": (
            "CỰC KỲ CỢT NHÃ, hài hước, khịa (roast) người viết bài một cách vui vẻ. "
            "Đừng nghiêm túc, hãy nhây và bựa."
        ),
        "deep": (
            "ĐÚNG CHẤT TÂM SỰ (deep talk), vô cùng đồng cảm, an ủi nhẹ nhàng, sâu sắc, thấu hiểu cảm xúc "
            "của người viết. Giọng điệu ấm áp."
        ),
        "normal": "Bình thường, thân thiện, lịch sự, như một người bạn đang trò chuyện rôm rả.",
    },
    "forum_comment_fallback": "Chủ đề này làm tui lú quá bro... 🤐",
}

# Appended verbatim after the rendered chat template; downstream parsing depends on it.
RESPONSE_TAG_BLOCK = (
    "<reply>\n(response)\n</reply>\n<react>\n(emoji or empty)\n</react>\n<memory>\n(summary or IGNORE)\n</memory>"
)


def _cfg() -> dict[str, object]:
    return load_prompt_json("chat.json", _DEFAULTS)


def _template(name: str) -> str:
    value = _cfg().get(name, _DEFAULTS[name])
    return str(value) if isinstance(value, str) and value.strip() else str(_DEFAULTS[name])


def build_optimize_query_prompt(query: str) -> str:
    return _template("optimize_query_template").format(query=query)


def build_clean_and_summarize_prompt(raw_text: str, preferred_language: str = "Vietnamese") -> str:
    return _template("clean_and_summarize_template").format(
        raw_text=raw_text,
        preferred_language=preferred_language,
    )


def build_summarize_history_prompt(full_history: str, preferred_language: str = "Vietnamese") -> str:
    return _template("summarize_history_template").format(
        full_history=full_history,
        preferred_language=preferred_language,
    )


def build_analyze_persona_prompt(display_name: str, raw_input: str, preferred_language: str = "Vietnamese") -> str:
    return _template("analyze_persona_template").format(
        display_name=display_name,
        raw_input=raw_input,
        preferred_language=preferred_language,
    )


def build_main_chat_prompt(
    *,
    profile: str,
    persona: str,
    server_context: str,
    short_term: str,
    long_term: str,
    message: str,
    preferred_language: str = "Vietnamese",
    creator_name: str = "It's Russell",
) -> str:
    body = _template("main_chat_template").format(
        profile=profile,
        persona=persona,
        server_context=server_context,
        short_term=short_term,
        long_term=long_term,
        message=message,
        preferred_language=preferred_language,
        creator_name=creator_name,
    )
    return body + RESPONSE_TAG_BLOCK


def build_daily_fact_prompt(past_topics: str, preferred_language: str = "Vietnamese") -> str:
    return _template("daily_fact_template").format(
        past_topics=past_topics,
        preferred_language=preferred_language,
    )


def forum_tone_instruction(tone: str) -> str:
    tones = _cfg().get("forum_tones")
    if not isinstance(tones, dict):
        tones = _DEFAULTS["forum_tones"]
    key = (tone or "").strip().lower()
    selected = tones.get(key) or tones.get("normal") or _DEFAULTS["forum_tones"]["normal"]
    return str(selected)


def build_forum_comment_prompt(title: str, content: str, persona: str, tone: str, bot_name: str = "AnhPan") -> str:
    return _template("forum_comment_template").format(
        bot_name=bot_name,
        persona=persona,
        title=title,
        content=content,
        tone_instruction=forum_tone_instruction(tone),
    )


def forum_comment_fallback() -> str:
    return _template("forum_comment_fallback")
