#!/usr/bin/env python3
"""
Labels demo: unordered event checking with a concurrent workload.

This script walks through the checker end to end:
- Loading the labels expectation set from YAML
- Running the checker and a simulated demo-app install in parallel
- Retrying a flaky install while keeping the checker deadline alive
- Uninstalling the demo app after both have finished
"""

import random
from typing import List, Optional

from event_checker.config import BUNDLED_EXPECTATIONS_DIR, CheckerSettings, configure_logging
from event_checker.engine.compiler import load_expectation_file
from event_checker.engine.models import ObservedEvent, process_exec
from event_checker.engine.orchestrator import ParallelOrchestrator, RunOutcome, Workload
from event_checker.engine.sources import QueueEventSource

NAMESPACE = "labels"

SERVICES = {
    "adservice": "adservice",
    "cartservice": "cartservice",
    "checkoutservice": "checkoutservice",
    "currencyservice": "currencyservice",
    "emailservice": "emailservice",
    "frontend": "frontend",
    "loadgenerator": "loadgenerator",
    "paymentservice": "paymentservice",
    "productcatalogservice": "productcatalogservice",
    "recommendationservice": "recommendationservice",
    "redis": "redis-cart",
    "shippingservice": "shippingservice",
}


def demo_app_events(rng: random.Random) -> List[ObservedEvent]:
    """Exec events the demo app produces, in a random start order with some noise."""
    events = []
    for process, app in SERVICES.items():
        labels = {"app": app, "pod-template-hash": f"{rng.getrandbits(32):08x}"}
        events.append(process_exec(process, labels, namespace=NAMESPACE))
        events.append(process_exec("sh", {"app": app}, namespace=NAMESPACE))
    events.append(process_exec("kube-proxy", {"k8s-app": "kube-proxy"}, namespace="kube-system"))
    rng.shuffle(events)
    return events


class DemoAppInstaller:
    """Pretends to install the demo app, failing the first ``failures`` attempts."""

    def __init__(self, source: QueueEventSource, rng: random.Random, failures: int = 1):
        self.source = source
        self.rng = rng
        self.failures = failures
        self.installed = False

    def install(self) -> None:
        if self.failures > 0:
            self.failures -= 1
            raise RuntimeError("chart repository temporarily unavailable")
        self.source.put_many(demo_app_events(self.rng))
        self.installed = True

    def uninstall(self) -> None:
        self.installed = False


def run_demo(
    seed: int = 7,
    install_failures: int = 1,
    settings: Optional[CheckerSettings] = None,
) -> RunOutcome:
    settings = settings or CheckerSettings()
    rng = random.Random(seed)

    compiled = load_expectation_file(BUNDLED_EXPECTATIONS_DIR / "labels.yaml")
    checker = compiled.build_checker(settings=settings)

    source = QueueEventSource()
    installer = DemoAppInstaller(source, rng, failures=install_failures)
    workload = Workload(installer.install, name="install-demo-app", settings=settings)

    return ParallelOrchestrator().run(
        checker,
        source,
        collaborators=[workload],
        cleanup=[("uninstall-demo-app", installer.uninstall)],
    )


def main() -> None:
    configure_logging()
    print("=" * 70)
    print("DEMO: Labels checker with a concurrent workload")
    print("=" * 70)

    outcome = run_demo()

    print(f"\nPassed: {outcome.passed}")
    print(outcome.detail)


if __name__ == "__main__":
    main()
