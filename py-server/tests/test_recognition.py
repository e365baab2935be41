import json
import random

import pytest

from engine.config import RetryOptions
from models.engine_types import EncodedImage
from processors.recognition import (
    RetryingRecognizer,
    classify_recognition_error,
    error_message,
    parse_products_response,
)
from utils.validation import AuthenticationFailure, RateLimited, RecognitionError

PAGE_IMAGE = EncodedImage.from_bytes(b'\xff\xd8\xff', 'image/jpeg', 3, 'a.pdf-page-3.jpg')


class FixedRandom(random.Random):
    def uniform(self, a, b):
        return b


class TestClassification:
    @pytest.mark.parametrize("message", [
        "429 Too Many Requests",
        "Quota exceeded for model",
        "RESOURCE_EXHAUSTED",
        "rate limit reached",
    ])
    def test_rate_limits(self, message):
        assert isinstance(classify_recognition_error(Exception(message)), RateLimited)

    @pytest.mark.parametrize("message", [
        "API key not valid. Please pass a valid API key.",
        "401 Unauthorized",
        "PERMISSION_DENIED",
    ])
    def test_authentication(self, message):
        assert isinstance(classify_recognition_error(Exception(message)), AuthenticationFailure)

    def test_everything_else_is_generic(self):
        classified = classify_recognition_error(ValueError("model overloaded"))
        assert type(classified) is RecognitionError
        assert isinstance(classified.__cause__, ValueError)

    def test_classified_errors_pass_through(self):
        error = RateLimited("slow down")
        assert classify_recognition_error(error) is error

    def test_json_error_body_is_unwrapped(self):
        body = json.dumps({"error": {"code": 400, "message": "API key expired"}})
        assert error_message(Exception(body)) == "API key expired"
        assert str(classify_recognition_error(Exception(body))) == "API key expired"


class TestParseProducts:
    def test_products_are_parsed(self):
        text = json.dumps({"products": [
            {"nome": "Chair", "bounding_box": [1, 2, 3, 4], "especificacoes": [{"key": "Cor", "value": "Azul"}]},
            {"produto_nome": "Lamp", "especificacoes": None},
        ]})
        products = parse_products_response(text)

        assert [p.nome for p in products] == ["Chair", "Lamp"]
        assert products[0].bounding_box == [1, 2, 3, 4]
        assert products[0].especificacoes[0].value == "Azul"
        assert products[1].especificacoes == []

    @pytest.mark.parametrize("text", [None, "", "not json", "[]", '{"items": []}'])
    def test_unusable_responses_yield_nothing(self, text):
        assert parse_products_response(text) == []

    def test_malformed_records_are_dropped(self):
        text = json.dumps({"products": [{"nome": "Ok"}, {"nome": "Bad", "bounding_box": "here"}, "junk"]})
        assert [p.nome for p in parse_products_response(text)] == ["Ok"]


class TestRetryingRecognizer:
    class Scripted:
        def __init__(self, outcomes):
            self.outcomes = list(outcomes)
            self.calls = 0

        def recognize(self, image, prompt):
            self.calls += 1
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome

    def test_backoff_doubles_from_first_attempt(self):
        retrying = RetryingRecognizer(self.Scripted([]), RetryOptions(), rng=FixedRandom())
        assert [retrying.backoff_delay(a) for a in (1, 2, 3, 4)] == [3.0, 5.0, 9.0, 17.0]

    def test_backoff_without_jitter(self):
        options = RetryOptions(base_delay_seconds=0.5, max_jitter_seconds=0)
        retrying = RetryingRecognizer(self.Scripted([]), options)
        assert retrying.backoff_delay(3) == 4.0

    def test_success_after_rate_limits(self):
        sleeps = []
        inner = self.Scripted([RateLimited("429"), ["done"]])
        retrying = RetryingRecognizer(inner, sleep=sleeps.append, rng=FixedRandom())

        assert retrying.recognize(PAGE_IMAGE, "prompt") == ["done"]
        assert inner.calls == 2
        assert sleeps == [3.0]

    def test_gives_up_after_max_attempts(self):
        sleeps = []
        inner = self.Scripted([RateLimited("429")] * 3)
        retrying = RetryingRecognizer(inner, RetryOptions(max_attempts=3), sleep=sleeps.append, rng=FixedRandom())

        with pytest.raises(RateLimited):
            retrying.recognize(PAGE_IMAGE, "prompt")
        assert inner.calls == 3
        assert sleeps == [3.0, 5.0]

    def test_other_errors_are_not_retried(self):
        sleeps = []
        inner = self.Scripted([AuthenticationFailure("bad key"), ["unused"]])
        retrying = RetryingRecognizer(inner, sleep=sleeps.append)

        with pytest.raises(AuthenticationFailure):
            retrying.recognize(PAGE_IMAGE, "prompt")
        assert inner.calls == 1
        assert sleeps == []

    def test_invalid_options_are_rejected(self):
        with pytest.raises(ValueError):
            RetryingRecognizer(self.Scripted([]), RetryOptions(max_attempts=0))
