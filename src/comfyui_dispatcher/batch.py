"""
Batch Execution

Realize ``batch_size`` as independent dispatches with independent seeds.
The dispatcher itself never batches inside a graph.
"""

import random
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import Any, Dict, List, Optional

from .dispatcher import Dispatcher, get_dispatcher
from .mcp_utils import get_correlation_id, log_structured, set_correlation_id
from .types import DispatchResult, GenerationRequest

# Seeds stay within the exact-integer range of JSON numbers.
MAX_SEED = 2**53 - 1


def batch_requests(request: GenerationRequest, rng: Optional[random.Random] = None) -> List[GenerationRequest]:
    """
    Split a request into ``batch_size`` single-job requests.

    With a seed, job i gets ``seed + i``; without one, each job draws its own
    random seed so the jobs do not all reuse the template default.
    """
    count = max(request.batch_size, 1)
    rng = rng or random.Random()
    if request.seed is not None:
        seeds = [(request.seed + i) % (MAX_SEED + 1) for i in range(count)]
    else:
        seeds = [rng.randint(0, MAX_SEED) for _ in range(count)]
    return [replace(request, seed=seed, batch_size=1) for seed in seeds]


def dispatch_batch(
    request: GenerationRequest,
    max_workers: int = 4,
    stagger_seconds: float = 0.0,
    dispatcher: Optional[Dispatcher] = None,
) -> Dict[str, Any]:
    """
    Run ``request.batch_size`` independent dispatches concurrently.

    Args:
        request: Request whose ``batch_size`` sets the job count.
        max_workers: Concurrent dispatches (1 for sequential).
        stagger_seconds: Delay between consecutive submissions.
        dispatcher: Dispatcher to use, the process-wide one by default.

    Returns:
        Counts plus one result dict per job, in job order.
    """
    dispatcher = dispatcher or get_dispatcher()
    cid = get_correlation_id()
    batch_id = str(uuid.uuid4())[:8]
    jobs = batch_requests(request)

    log_structured("info", "batch_started",
        batch_id=batch_id,
        model_id=request.model_id,
        total_jobs=len(jobs),
        parallel=max_workers,
    )

    def _run(index: int, job: GenerationRequest) -> DispatchResult:
        set_correlation_id(cid)
        if stagger_seconds and index:
            time.sleep(stagger_seconds * index)
        return dispatcher.dispatch(job)

    with ThreadPoolExecutor(max_workers=max(max_workers, 1)) as pool:
        futures = [pool.submit(_run, i, job) for i, job in enumerate(jobs)]
        results = [future.result() for future in futures]

    completed = sum(1 for r in results if r.is_ok)
    log_structured("info", "batch_completed",
        batch_id=batch_id,
        total_jobs=len(jobs),
        completed=completed,
        errors=len(jobs) - completed,
    )

    return {
        "batch_id": batch_id,
        "total_jobs": len(jobs),
        "completed": completed,
        "errors": len(jobs) - completed,
        "results": [
            {"index": i, "seed": job.seed, **result.to_dict()}
            for i, (job, result) in enumerate(zip(jobs, results))
        ],
    }
