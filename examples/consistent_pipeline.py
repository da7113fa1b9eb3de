import logging

from opentelemetry.trace import SpanContext, TraceFlags

from otelconsistent.env import Config, Env, create_sampler, set_up_console_logging
from otelconsistent.sampler import parent_based, probability_based
from otelconsistent.state import from_trace_state
from otelconsistent.threshold import adjusted_count


def run():
    main_logger = logging.getLogger("main")

    # front end keeps a quarter of all traces, the back end a sixteenth
    frontend = create_sampler(Config(Env({"OTEL_TRACES_SAMPLER": "consistent_probability", "OTEL_TRACES_SAMPLER_ARG": "0.25"})))
    backend = parent_based(probability_based(0.0625))

    kept = {"frontend": 0, "backend": 0}
    estimated = 0.0
    for i in range(10000):
        trace_id = i + 1
        result = frontend.should_sample(trace_id, "GET /")
        flags = TraceFlags.SAMPLED if result.decision.is_sampled() else TraceFlags.DEFAULT
        parent = SpanContext(trace_id, 1, True, TraceFlags(flags), result.trace_state)
        if result.decision.is_sampled():
            kept["frontend"] += 1
            estimated += adjusted_count(from_trace_state(result.trace_state).p)
        if backend.should_sample(trace_id, "SELECT", parent).decision.is_sampled():
            kept["backend"] += 1

    main_logger.info("kept %s of 10000 traces, estimated total %.0f", kept, estimated)


if __name__ == '__main__':
    logging.getLogger("main").setLevel(logging.INFO)
    set_up_console_logging(Config(), logging.getLogger("main"))
    run()
