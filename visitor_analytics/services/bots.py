"""
User-agent bot classification.

Pure function of its inputs: the same user-agent and automation flag always give
the same answer. Unrecognized user-agents are treated as bots.
"""

# Crawlers, command-line tools and scripting-language HTTP clients
BOT_INDICATORS = (
    "http://", "https://",
    "bot", "spider", "crawler", "scraper", "slurp", "facebookexternalhit",
    "curl", "wget", "postman", "insomnia",
    "python", "java", "php", "ruby", "perl", "go-http", "node", "axios",
    "headless", "phantom", "selenium", "puppeteer", "playwright",
    "test", "debug", "manual",
)

# Rendering-engine and browser tokens present in every mainstream browser UA
BROWSER_INDICATORS = (
    "mozilla", "webkit", "gecko", "chrome", "safari", "firefox", "edge", "opera",
)


def is_bot(user_agent: str | None, automation: bool = False) -> bool:
    """Classify a client as bot (True) or human (False)"""
    if automation:
        return True

    ua = (user_agent or "").strip().lower()
    if not ua:
        return True

    if any(indicator in ua for indicator in BOT_INDICATORS):
        return True

    # Fail closed: no browser token means no evidence of a human
    return not any(indicator in ua for indicator in BROWSER_INDICATORS)
