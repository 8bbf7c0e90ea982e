import pytest

from veil_engine.detection_config import DetectionConfig
from veil_engine.detectors.pipeline import DetectionPipeline
from veil_engine.detectors.recognizer_registry import create_default_registry


class FakeTokenClassifier:
    """Async token classifier returning canned BIO tokens for known names."""

    def __init__(self, names=("Hans Müller",), score=0.9, fail_times=0, error=None):
        self.names = names
        self.score = score
        self.fail_times = fail_times
        self.error = error or TimeoutError("model loading")
        self.calls = 0

    async def __call__(self, text):
        self.calls += 1
        if self.calls <= self.fail_times:
            raise self.error
        tokens = []
        for name in self.names:
            position = text.find(name)
            if position < 0:
                continue
            first, _, last = name.partition(" ")
            tokens.append({"entity": "B-PER", "score": self.score, "word": first,
                           "start": position, "end": position + len(first)})
            if last:
                last_start = position + len(first) + 1
                tokens.append({"entity": "I-PER", "score": self.score, "word": last,
                               "start": last_start, "end": last_start + len(last)})
        return tokens


@pytest.fixture
def config(tmp_path):
    return DetectionConfig(config_path=str(tmp_path / "detection_config.json"))


@pytest.fixture(scope="session")
def registry():
    return create_default_registry()


@pytest.fixture(scope="session")
def session_config(tmp_path_factory):
    path = tmp_path_factory.mktemp("config") / "detection_config.json"
    return DetectionConfig(config_path=str(path))


@pytest.fixture(scope="session")
def pipeline(session_config, registry):
    return DetectionPipeline(config=session_config, registry=registry)
