import json

from unora.features.reveals.content import ContentGenerationError, TemplateRevealContentGenerator


class FakeMessage:
    def __init__(self, content: str):
        self.content = content


class FakeChoice:
    def __init__(self, content: str):
        self.message = FakeMessage(content)


class FakeCompletion:
    def __init__(self, content: str):
        self.choices = [FakeChoice(content)]


class FakeCompletions:
    def __init__(self, content: str):
        self.content = content
        self.calls = []

    def create(self, *args, **kwargs):
        self.calls.append(kwargs)
        return FakeCompletion(self.content)


class FakeChat:
    def __init__(self, content: str):
        self.completions = FakeCompletions(content)


class FakeGroq:
    """Stands in for groq.Groq: returns one canned chat completion."""

    def __init__(self, content=None):
        if content is None:
            content = json.dumps({
                "summary": "You both plan ahead but love a detour.",
                "insight": "Shared curiosity keeps conversations going.",
                "starters": ["Best detour you ever took?", "What are you curious about lately?"],
                "dimension_scores": {"openness": 0.9, "energy": "0.7", "humour": 3},
            })
        self.chat = FakeChat(content)


class FailingGenerator:
    def __init__(self):
        self.calls = 0

    def generate(self, connection_id, milestone):
        self.calls += 1
        raise ContentGenerationError("model unavailable")


class FlakyGenerator:
    """Fails `failures` times, then delegates to the template generator."""

    def __init__(self, failures: int = 1):
        self.failures = failures
        self.calls = 0

    def generate(self, connection_id, milestone):
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError("timeout talking to model")
        return TemplateRevealContentGenerator().generate(connection_id, milestone)
