"""
图片生成编排测试
"""
import asyncio
import base64
import threading

import pytest

from banana_studio.core.errors import (
    GenerationFailed,
    InsufficientCredits,
    ModelUnavailable,
    Unauthorized,
    ValidationFailed,
)
from banana_studio.models.account import ROLE_ADMIN
from banana_studio.services.generation_service import (
    GenerationRequest,
    GenerationService,
    decode_reference_image,
)

from conftest import PNG_BYTES, FakeImageModel, MemoryObjectStore


def _build(ledger, settings, script=None, configured=True, fail_on=None):
    model = FakeImageModel(script=script, configured=configured)
    store = MemoryObjectStore(fail_on=fail_on)
    service = GenerationService(ledger=ledger, image_model=model, object_store=store, settings=settings)
    return service, model, store


def _run(service, account, **kwargs):
    return asyncio.run(service.generate(account, GenerationRequest(**kwargs)))


class TestOutcomes:
    """生成结果与计费测试"""

    def test_full_success_charges_cost(self, ledger, settings, make_account):
        account = make_account(credits=5)
        service, model, store = _build(ledger, settings)

        result = _run(service, account, prompt="a cat", image_count=2, quality_tier="standard")

        assert result.outcome == "full"
        assert result.succeeded == 2
        assert result.cost == 2
        assert result.charged == 2
        assert result.remaining_credits == 3
        assert len(model.calls) == 2
        assert len(store.objects) == 2

        balance = ledger.check_balance(account.id)
        assert balance.credits == 3
        assert balance.reserved_credits == 0

    def test_artifact_carries_data_url_and_public_url(self, ledger, settings, make_account):
        account = make_account(credits=3)
        service, _, _ = _build(ledger, settings)

        artifact = _run(service, account, prompt="a cat").images[0]

        assert artifact.base64.startswith("data:image/png;base64,")
        assert artifact.url.startswith(f"https://cdn.test/{account.id}/")
        assert artifact.url.endswith(".png")

    def test_partial_success_charges_full_cost(self, ledger, settings, make_account):
        """3 张成功 2 张，仍按请求的 3 张扣费"""
        account = make_account(credits=5)
        service, _, _ = _build(ledger, settings, script=["image", "none", "image"])

        result = _run(service, account, prompt="a cat", image_count=3)

        assert result.outcome == "partial"
        assert result.succeeded == 2
        assert result.requested == 3
        assert result.charged == 3
        assert ledger.check_balance(account.id).credits == 2

    def test_partial_success_prorated_when_configured(self, ledger, settings, make_account):
        account = make_account(credits=10)
        prorate = settings.model_copy(update={"charge_full_cost_on_partial": False})
        service, _, _ = _build(ledger, prorate, script=["image", "error", "image"])

        result = _run(service, account, prompt="a cat", image_count=3, quality_tier="high")

        assert result.cost == 6
        assert result.charged == 4
        assert ledger.check_balance(account.id).credits == 6

    def test_zero_success_charges_nothing(self, ledger, settings, make_account):
        account = make_account(credits=3)
        service, _, _ = _build(ledger, settings, script=["none", "error", "none"])

        with pytest.raises(GenerationFailed):
            _run(service, account, prompt="a cat", image_count=3)

        balance = ledger.check_balance(account.id)
        assert balance.credits == 3
        assert balance.reserved_credits == 0

    def test_results_keep_request_order(self, ledger, settings, make_account):
        account = make_account(credits=3)
        service, _, _ = _build(ledger, settings)

        result = _run(service, account, prompt="a cat", image_count=3)

        decoded = [
            base64.b64decode(artifact.base64.split(",", 1)[1]) for artifact in result.images
        ]
        assert decoded == [PNG_BYTES + bytes([i]) for i in range(3)]

    def test_admin_is_never_debited(self, ledger, settings, make_account):
        admin = make_account(credits=9999, role=ROLE_ADMIN)
        service, _, _ = _build(ledger, settings)

        result = _run(service, admin, prompt="a cat", image_count=3, quality_tier="ultra")

        assert result.charged == 12
        assert result.remaining_credits == 9999
        assert ledger.check_balance(admin.id).credits == 9999


class TestPreconditions:
    """前置校验测试"""

    def test_insufficient_credits_reports_needed_and_available(self, ledger, settings, make_account):
        account = make_account(credits=2)
        service, model, _ = _build(ledger, settings)

        with pytest.raises(InsufficientCredits) as exc_info:
            _run(service, account, prompt="a cat", image_count=1, quality_tier="ultra")

        assert exc_info.value.needed == 4
        assert exc_info.value.available == 2
        assert model.calls == []
        assert ledger.check_balance(account.id).credits == 2

    def test_unauthenticated(self, ledger, settings):
        service, model, _ = _build(ledger, settings)

        with pytest.raises(Unauthorized):
            _run(service, None, prompt="a cat")
        assert model.calls == []

    def test_empty_prompt(self, ledger, settings, make_account):
        account = make_account()
        service, _, _ = _build(ledger, settings)

        with pytest.raises(ValidationFailed):
            _run(service, account, prompt="   ")

    def test_image_count_is_clamped(self, ledger, settings, make_account):
        account = make_account(credits=10)
        service, model, _ = _build(ledger, settings)

        result = _run(service, account, prompt="a cat", image_count=5)

        assert result.requested == 3
        assert len(model.calls) == 3
        assert result.cost == 3

    def test_invalid_reference_image(self, ledger, settings, make_account):
        account = make_account()
        service, model, _ = _build(ledger, settings)

        with pytest.raises(ValidationFailed):
            _run(service, account, prompt="a cat", reference_images=["data:text/plain;base64,AAAA"])
        assert model.calls == []

    def test_reference_images_forwarded(self, ledger, settings, make_account):
        account = make_account()
        service, model, _ = _build(ledger, settings)
        encoded = base64.b64encode(PNG_BYTES).decode()

        _run(
            service,
            account,
            prompt="a cat",
            reference_image=f"data:image/jpeg;base64,{encoded}",
            reference_images=[encoded],
        )

        refs = model.calls[0]["reference_images"]
        assert [r.mime_type for r in refs] == ["image/jpeg", "image/png"]
        assert refs[1].data == PNG_BYTES

    def test_model_not_configured(self, ledger, settings, make_account):
        account = make_account()
        service, _, _ = _build(ledger, settings, configured=False)

        with pytest.raises(ModelUnavailable):
            _run(service, account, prompt="a cat")
        assert ledger.check_balance(account.id).reserved_credits == 0


class TestBranchFailures:
    """单张失败处理测试"""

    def test_timeout_skips_branch(self, ledger, settings, make_account):
        account = make_account(credits=3)
        service, _, _ = _build(ledger, settings, script=["hang", "image"])

        result = _run(service, account, prompt="a cat", image_count=2)

        assert result.succeeded == 1
        assert result.outcome == "partial"

    def test_storage_failure_skips_branch(self, ledger, settings, make_account):
        account = make_account(credits=3)
        service, _, store = _build(ledger, settings, fail_on=[1])

        result = _run(service, account, prompt="a cat", image_count=2)

        assert result.succeeded == 1
        assert len(store.objects) == 1

    def test_all_branches_unavailable(self, ledger, settings, make_account):
        account = make_account(credits=3)
        service, _, _ = _build(ledger, settings, script=["unavailable", "unavailable"])

        with pytest.raises(ModelUnavailable):
            _run(service, account, prompt="a cat", image_count=2)
        assert ledger.check_balance(account.id).credits == 3


class TestHelpers:
    """辅助函数测试"""

    def test_decode_reference_image(self):
        encoded = base64.b64encode(PNG_BYTES).decode()

        payload = decode_reference_image(f"data:image/webp;base64,{encoded}")

        assert payload.mime_type == "image/webp"
        assert payload.data == PNG_BYTES

    @pytest.mark.parametrize("value", ["", "data:image/png,abc", "###not-base64###"])
    def test_decode_reference_image_rejects(self, value):
        with pytest.raises(ValidationFailed):
            decode_reference_image(value)

    def test_quote(self, ledger, settings):
        service, _, _ = _build(ledger, settings)

        assert service.quote("high", 7) == {
            "quality_tier": "high",
            "image_count": 3,
            "per_image": 2,
            "cost": 6,
        }


class TestSettlement:
    """结算异常测试"""

    def test_settle_failure_returns_images_without_charge(self, ledger, settings, make_account, monkeypatch):
        account = make_account(credits=5)
        service, _, _ = _build(ledger, settings)

        def broken_settle(*args, **kwargs):
            raise RuntimeError("database is locked")

        monkeypatch.setattr(ledger, "settle", broken_settle)

        result = _run(service, account, prompt="a cat", image_count=2)

        assert result.succeeded == 2
        assert result.charged == 0
        assert result.remaining_credits is None
        balance = ledger.check_balance(account.id)
        assert balance.credits == 5
        assert balance.reserved_credits == 0

    def test_hold_released_off_the_event_loop(self, ledger, settings, make_account, monkeypatch):
        account = make_account(credits=3)
        service, _, _ = _build(ledger, settings, script=["none"])
        main_thread = threading.get_ident()
        release_threads = []
        real_release = ledger.release

        def tracking_release(account_id, held):
            release_threads.append(threading.get_ident())
            real_release(account_id, held)

        monkeypatch.setattr(ledger, "release", tracking_release)

        with pytest.raises(GenerationFailed):
            _run(service, account, prompt="a cat")

        assert len(release_threads) == 1
        assert release_threads[0] != main_thread
        assert ledger.check_balance(account.id).reserved_credits == 0
