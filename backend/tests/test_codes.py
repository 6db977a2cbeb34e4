import pytest

from coupon_engine.services import codes as codes_service
from coupon_engine.services.errors import CodeGenerationExhausted


def test_random_code_uses_unambiguous_alphabet() -> None:
    code = codes_service.random_code()
    assert len(code) == 12
    assert set(code) <= set(codes_service.CODE_ALPHABET)
    for ambiguous in "01IO":
        assert ambiguous not in codes_service.CODE_ALPHABET

    assert len(codes_service.random_code(6)) == 6


@pytest.mark.anyio
async def test_generate_unique_code_skips_stored_and_reserved_codes(seed, session_factory) -> None:
    template = await seed.template()
    user = await seed.user()
    await seed.coupon(template, user, unique_code="TAKENTAKEN22")

    candidates = iter(["TAKENTAKEN22", "RESERVED2345", "FRESHCODE234"])
    reserved = {"RESERVED2345"}
    async with session_factory() as session:
        code = await codes_service.generate_unique_code(
            session, reserved=reserved, candidate_factory=lambda: next(candidates)
        )

    assert code == "FRESHCODE234"
    assert reserved == {"RESERVED2345", "FRESHCODE234"}


@pytest.mark.anyio
async def test_generate_unique_code_gives_up_after_max_attempts(seed, session_factory) -> None:
    template = await seed.template()
    user = await seed.user()
    await seed.coupon(template, user, unique_code="ALWAYSTAKEN2")

    async with session_factory() as session:
        with pytest.raises(CodeGenerationExhausted, match="Unable to generate unique code after maximum attempts"):
            await codes_service.generate_unique_code(
                session, max_attempts=3, candidate_factory=lambda: "ALWAYSTAKEN2"
            )
