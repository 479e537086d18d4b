import concurrent.futures
import logging

logger = logging.getLogger(__name__)


def connect(machines, loop=False):
    """
    Chain machines so each one reads the previous machine's outputs.

    The input channel of machines[i] becomes the output channel of
    machines[i - 1]; with loop=True the first machine also reads the last
    machine's outputs. Values already queued on a rewired input channel are
    moved onto the shared channel ahead of anything produced later. A single
    machine with loop=True reads its own outputs.
    """
    machines = list(machines)
    pairs = list(zip(machines, machines[1:]))
    if loop and machines:
        pairs.append((machines[-1], machines[0]))
    for source, target in pairs:
        pending = []
        while not target.inputs.empty():
            pending.append(target.inputs.get_nowait())
        target.inputs = source.outputs
        for value in pending:
            target.inputs.put(value)
        logger.debug("connected %s -> %s", source.name, target.name)
    return machines


def run_all(machines, max_workers=None):
    """
    Run every machine on a thread pool and collect {name: last output}.

    Machines must have distinct names. A failing machine raises MachineError
    naming it; the remaining results are discarded.
    """
    machines = list(machines)
    names = [machine.name for machine in machines]
    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        raise ValueError(f"Duplicate machine names: {', '.join(duplicates)}")

    # Wired machines block on each other, so each needs its own thread.
    workers = max_workers or max(len(machines), 1)
    logger.info("running %d machines on %d threads", len(machines), workers)
    results = {}
    executor = concurrent.futures.ThreadPoolExecutor(max_workers=workers)
    try:
        futures = [executor.submit(machine.call) for machine in machines]
        for future in concurrent.futures.as_completed(futures):
            name, value = future.result()
            results[name] = value
    except BaseException:
        # Wake peers of the failed machine that wait on input, so the
        # worker threads finish and the interpreter can exit.
        for machine in machines:
            machine.stop()
        executor.shutdown(wait=True, cancel_futures=True)
        raise
    executor.shutdown(wait=True)
    logger.info("collected results from %d machines", len(results))
    return results
