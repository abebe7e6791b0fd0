"""
Fusion transcription: query several STT providers and merge their output.

One call per configured provider, in parallel or one after another. Each
call is bounded by the fusion timeout; a timed-out call becomes a failed
result and its late response is thrown away. Failed providers never abort
the batch; only too few successes does.
"""

import time
from collections import Counter
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FuturesTimeoutError, wait
from typing import Callable, Dict, List, Optional

from .errors import FusionInsufficientProvidersError
from .metrics import MetricsWriter, log_fusion_result
from .providers import ProviderRegistry
from .types import (
    ConfigSnapshot, FusionCheck, FusionConfig, FusionResult, TranscriptionResult,
)
from .validate import validate_provider_key


# Base confidence by provider (APIs don't return one)
BASE_CONFIDENCE = {
    "openai": 0.90,
    "groq": 0.85,
}
DEFAULT_BASE_CONFIDENCE = 0.70

MIN_CONFIDENCE = 0.1
MAX_CONFIDENCE = 0.99
MAJORITY_VOTE_CONFIDENCE_CAP = 0.95


def fusion_transcribe(
    audio: bytes,
    config: FusionConfig,
    registry: ProviderRegistry,
    clock: Callable[[], float] = time.monotonic,
    metrics: Optional[MetricsWriter] = None,
) -> FusionResult:
    """
    Transcribe with every configured provider and merge the results.

    Args:
        audio: WAV bytes
        config: Fusion configuration
        registry: Registered providers
        clock: Monotonic clock in seconds
        metrics: Optional metrics writer

    Returns:
        FusionResult with the merged transcript

    Raises:
        FusionInsufficientProvidersError: fewer than min_providers_required succeeded
        ValueError: unknown strategy
    """
    start = clock()
    print(f"[Fusion] Strategy: {config.strategy}, providers: {', '.join(config.providers)}")

    if config.enable_parallel:
        results = _process_providers_parallel(audio, config, registry, clock)
    else:
        results = _process_providers_sequential(audio, config, registry, clock)

    successful = [r for r in results if r.success]
    if len(successful) < config.min_providers_required:
        raise FusionInsufficientProvidersError(len(successful), config.min_providers_required)

    final_transcript = apply_fusion_strategy(successful, config.strategy, config)
    confidence = calculate_overall_confidence(successful, config.strategy)

    if confidence < config.confidence_threshold:
        print(f"[Fusion] Low confidence result: {confidence:.2f} < {config.confidence_threshold}")

    result = FusionResult(
        final_transcript=final_transcript,
        confidence=confidence,
        strategy=config.strategy,
        results=results,
        processing_time_ms=int((clock() - start) * 1000),
        providers_used=[r.provider for r in successful],
    )
    log_fusion_result(metrics, result)
    return result


def _process_providers_parallel(
    audio: bytes,
    config: FusionConfig,
    registry: ProviderRegistry,
    clock: Callable[[], float],
) -> List[TranscriptionResult]:
    """Launch all providers together and wait for every one to settle or time out."""
    timeout = config.timeout_ms / 1000
    # Pool per call: a provider still running past its timeout only holds its own thread
    executor = ThreadPoolExecutor(
        max_workers=max(1, len(config.providers)), thread_name_prefix="fusion",
    )
    try:
        futures: List[Future] = [
            executor.submit(_process_provider, audio, provider_id, registry, clock)
            for provider_id in config.providers
        ]
        done, _ = wait(futures, timeout=timeout)
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    results = []
    for provider_id, future in zip(config.providers, futures):
        if future in done:
            results.append(future.result())
        else:
            results.append(_timeout_result(provider_id, config.timeout_ms))
    return results


def _process_providers_sequential(
    audio: bytes,
    config: FusionConfig,
    registry: ProviderRegistry,
    clock: Callable[[], float],
) -> List[TranscriptionResult]:
    """Run providers one at a time, each with its own timeout."""
    timeout = config.timeout_ms / 1000
    results = []
    for provider_id in config.providers:
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="fusion")
        try:
            future = executor.submit(_process_provider, audio, provider_id, registry, clock)
            results.append(future.result(timeout=timeout))
        except FuturesTimeoutError:
            results.append(_timeout_result(provider_id, config.timeout_ms))
        finally:
            executor.shutdown(wait=False)
    return results


def _timeout_result(provider_id: str, timeout_ms: int) -> TranscriptionResult:
    print(f"[Fusion] Provider {provider_id} failed: Timeout")
    return TranscriptionResult(
        provider=provider_id,
        transcript="",
        confidence=0.0,
        processing_time_ms=timeout_ms,
        success=False,
        error="Timeout",
    )


def _process_provider(
    audio: bytes,
    provider_id: str,
    registry: ProviderRegistry,
    clock: Callable[[], float],
) -> TranscriptionResult:
    """Run one provider. Never raises: failures become failed results."""
    start = clock()
    try:
        provider = registry.get(provider_id)
        if provider is None:
            raise LookupError(f"Provider {provider_id} is not registered")

        transcript = provider.transcribe(audio)
        processing_time_ms = int((clock() - start) * 1000)
        return TranscriptionResult(
            provider=provider_id,
            transcript=transcript,
            confidence=estimate_confidence(transcript, provider_id, processing_time_ms),
            processing_time_ms=processing_time_ms,
            success=True,
        )
    except Exception as e:
        print(f"[Fusion] Provider {provider_id} failed: {e}")
        return TranscriptionResult(
            provider=provider_id,
            transcript="",
            confidence=0.0,
            processing_time_ms=int((clock() - start) * 1000),
            success=False,
            error=str(e),
        )


# Strategies

def apply_fusion_strategy(
    results: List[TranscriptionResult],
    strategy: str,
    config: FusionConfig,
) -> str:
    """
    Combine successful results into one transcript.

    Raises:
        ValueError: unknown strategy
    """
    if not results:
        return ""

    if strategy == "best-confidence":
        return select_best_confidence(results).transcript
    if strategy == "primary-fallback":
        return combine_primary_fallback(results, config.primary_provider, config.confidence_threshold)
    if strategy == "majority-vote":
        return combine_majority_vote(results)
    if strategy == "weighted-average":
        return combine_weighted_average(results, config.provider_weights)
    if strategy == "consensus":
        return combine_consensus(results, config.confidence_threshold)

    raise ValueError(f"Unknown fusion strategy: {strategy}")


def select_best_confidence(results: List[TranscriptionResult]) -> TranscriptionResult:
    """Highest confidence wins; the first one on ties."""
    return max(results, key=lambda r: r.confidence)


def combine_primary_fallback(
    results: List[TranscriptionResult],
    primary_provider: Optional[str],
    threshold: float,
) -> str:
    """Primary if confident enough, else the best of the others, else primary anyway."""
    primary = next((r for r in results if r.provider == primary_provider), None)
    if primary is not None and primary.confidence >= threshold:
        return primary.transcript

    fallback = [r for r in results if r.provider != primary_provider]
    if not fallback:
        return primary.transcript if primary else ""
    return select_best_confidence(fallback).transcript


def combine_majority_vote(results: List[TranscriptionResult]) -> str:
    """
    Word-level plurality vote by position.

    Words are compared lower-cased at the same index in every transcript;
    insertions and deletions are not realigned.
    """
    if len(results) == 1:
        return results[0].transcript

    word_lists = [r.transcript.lower().split() for r in results]
    max_length = max(len(words) for words in word_lists)

    final_words = []
    for i in range(max_length):
        counts = Counter(words[i] for words in word_lists if i < len(words))
        if counts:
            # most_common keeps the first word seen on ties
            final_words.append(counts.most_common(1)[0][0])

    return " ".join(final_words)


def combine_weighted_average(
    results: List[TranscriptionResult],
    provider_weights: Dict[str, float],
) -> str:
    """Pick the transcript with the highest provider weight x confidence."""
    if len(results) == 1:
        return results[0].transcript

    return max(
        results,
        key=lambda r: provider_weights.get(r.provider, 1.0) * r.confidence,
    ).transcript


def combine_consensus(results: List[TranscriptionResult], threshold: float) -> str:
    """
    Most frequent transcript among confident results.

    Comparison ignores case and surrounding whitespace; the returned text is
    the first matching transcript as the provider wrote it. With no
    confident results, falls back to best confidence.
    """
    if len(results) == 1:
        return results[0].transcript

    confident = [r for r in results if r.confidence >= threshold]
    if not confident:
        return select_best_confidence(results).transcript

    originals: Dict[str, str] = {}
    for r in confident:
        originals.setdefault(r.transcript.lower().strip(), r.transcript.strip())

    counts = Counter(r.transcript.lower().strip() for r in confident)
    winner = counts.most_common(1)[0][0]
    return originals[winner]


def calculate_overall_confidence(results: List[TranscriptionResult], strategy: str) -> float:
    """Overall confidence of a fusion run, per strategy."""
    if not results:
        return 0.0

    mean = sum(r.confidence for r in results) / len(results)

    if strategy == "best-confidence":
        return max(r.confidence for r in results)
    if strategy == "majority-vote":
        # More agreeing providers, more confidence
        return min(MAJORITY_VOTE_CONFIDENCE_CAP, 0.3 + 0.2 * len(results))
    # primary-fallback, consensus, weighted-average (mean of confidences, not weights)
    return mean


def estimate_confidence(transcript: str, provider: str, processing_time_ms: float) -> float:
    """
    Heuristic confidence for a transcript, clamped to [0.1, 0.99].

    Adjusts a per-provider base for length, latency and garbled text.
    """
    confidence = BASE_CONFIDENCE.get(provider, DEFAULT_BASE_CONFIDENCE)

    if len(transcript) > 50:
        confidence += 0.05
    if len(transcript) < 5:
        confidence -= 0.2

    if processing_time_ms < 1000:
        confidence -= 0.1
    elif processing_time_ms > 10000:
        confidence -= 0.05

    word_count = max(1, len(transcript.split()))
    if len(transcript) / word_count > 15:
        confidence -= 0.15

    return max(MIN_CONFIDENCE, min(MAX_CONFIDENCE, confidence))


def check_fusion_configuration(
    fusion: FusionConfig,
    config: ConfigSnapshot,
    validate_keys: bool = False,
) -> FusionCheck:
    """
    Report which fusion providers are usable.

    Args:
        fusion: Fusion configuration to test
        config: Snapshot holding API keys and base URLs
        validate_keys: Also probe each key against the provider's API

    Returns:
        FusionCheck; success when enough providers are available
    """
    available: List[str] = []
    errors: List[str] = []

    for provider_id in fusion.providers:
        api_key = config.api_key_for(provider_id)
        if not api_key:
            errors.append(f"{provider_id}: API key not configured")
            continue

        if validate_keys:
            validation = validate_provider_key(provider_id, api_key, config.base_url_for(provider_id))
            if not validation.valid:
                errors.append(f"{provider_id}: {validation.error}")
                continue

        available.append(provider_id)

    return FusionCheck(
        success=len(available) >= fusion.min_providers_required,
        available_providers=available,
        errors=errors,
    )
