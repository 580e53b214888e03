import pytest

from kuberoll.builds import extract_build
from kuberoll.config import Settings
from kuberoll.gateway import ExecutionGateway
from kuberoll.poller import ConvergencePoller

MANIFEST = """apiVersion: apps/v1
kind: Deployment
metadata:
  annotations:
    kubectl.kubernetes.io/last-applied-configuration: |
      {"spec":{"template":{"spec":{"containers":[{"image":"registry.local/{name}:build-1"}]}}}}
  name: {name}
spec:
  replicas: {replicas}
  template:
    spec:
      containers:
      - name: {name}
        image: {image}
        ports:
        - containerPort: 8080
      - name: sidecar
        image: registry.local/proxy:build-7
"""


def pod_row(pod_id, status="Running", ready=True, build=None, restarts=0, image=None):
    return {
        "id": pod_id,
        "status": status,
        "ready": ready,
        "restarts": restarts,
        "image": image or f"registry.local/app:build-{build}",
    }


def pod_rows(*specs):
    """Pods from (id, status, ready, build) tuples."""
    return [pod_row(pod_id, status, ready, build) for pod_id, status, ready, build in specs]


class FakeClock:
    def __init__(self, cluster=None):
        self.now = 1000.0
        self.cluster = cluster
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        if self.cluster is not None:
            self.cluster.tick()


class FakeCluster:
    """In-memory stand-in for kubectl, driven through the real gateway."""

    def __init__(self):
        self.deployments = {}
        self.pods = []
        self.timeline = []
        self.failures = {}
        self.replaced = []
        self.broken = set()
        self.vanishing = set()

    def add_deployment(self, name, replicas, build):
        self.deployments[name] = {"replicas": replicas, "image": f"registry.local/{name}:build-{build}"}

    def add_pod(self, pod_id, status="Running", ready=True, build=None, restarts=0, image=None):
        self.pods.append(pod_row(pod_id, status, ready, build, restarts, image))

    def fail(self, verb, times):
        self.failures[verb] = times

    def tick(self):
        if self.timeline:
            self.pods = self.timeline.pop(0)

    def _failing(self, verb):
        remaining = self.failures.get(verb, 0)
        if remaining:
            self.failures[verb] = remaining - 1
            return True
        return False

    def _pods_table(self):
        lines = ["NAME                      READY   STATUS    RESTARTS   AGE"]
        for pod in self.pods:
            ready = "1/1" if pod["ready"] else "0/1"
            lines.append(f"{pod['id']}   {ready}   {pod['status']}   {pod['restarts']}   3m")
        return "\n".join(lines) + "\n"

    def _deployments_table(self):
        lines = ["NAME      READY   UP-TO-DATE   AVAILABLE   AGE"]
        for name, spec in self.deployments.items():
            lines.append(f"{name}   {spec['replicas']}/{spec['replicas']}   {spec['replicas']}   {spec['replicas']}   10d")
        return "\n".join(lines) + "\n"

    def respond(self, args, stdin):
        args = [a for a in args if not a.startswith(("--namespace=", "--kubeconfig="))]
        verb = args[0] if args[0] != "get" else f"get {args[1]}"
        if len(args) > 2 and args[0] == "get" and args[1] == "pods":
            verb = "get builds"
        if self._failing(verb):
            return 1, "", "Unable to connect to the server: dial tcp: i/o timeout"

        if args[:2] == ["get", "deployments"]:
            return 0, self._deployments_table(), ""
        if args[:2] == ["get", "deployment"]:
            name = args[2]
            spec = self.deployments.get(name)
            if spec is None:
                return 1, "", f'Error from server (NotFound): deployments.apps "{name}" not found'
            manifest = MANIFEST.replace("{name}", name)
            manifest = manifest.replace("{replicas}", str(spec["replicas"]))
            return 0, manifest.replace("{image}", spec["image"]), ""
        if args[:2] == ["replace", "-f"]:
            name = stdin.split("  name: ", 1)[1].split("\n", 1)[0]
            if name in self.broken:
                return 1, "", f"Error from server (Conflict): deployments.apps \"{name}\" is being modified"
            image_line = [line for line in stdin.splitlines() if line.strip().startswith("image:")][0]
            self.deployments[name]["image"] = image_line.split("image:", 1)[1].strip()
            self.replaced.append((name, extract_build(stdin)))
            return 0, f"deployment.apps/{name} replaced\n", ""
        if args == ["get", "pods"]:
            table = self._pods_table()
            # deleted right after being listed, like a terminating pod
            self.pods = [pod for pod in self.pods if pod["id"] not in self.vanishing]
            self.vanishing = set()
            return 0, table, ""
        if args[:2] == ["get", "pods"]:
            ids = args[2:args.index("-o")]
            known = {pod["id"] for pod in self.pods}
            for pod_id in ids:
                if pod_id not in known:
                    return 1, "", f'Error from server (NotFound): pods "{pod_id}" not found'
            lines = ["NAME   IMAGE"]
            for pod in self.pods:
                if pod["id"] in ids:
                    lines.append(f"{pod['id']}   {pod['image']}")
            return 0, "\n".join(lines) + "\n", ""
        return 1, "", f"unknown command {args}"


class ScriptedGateway(ExecutionGateway):
    def __init__(self, settings, cluster, sleep=None):
        self.delays = []
        super().__init__(settings, sleep=sleep or self._record_delay)
        self.cluster = cluster
        self.calls = []

    async def _record_delay(self, seconds):
        self.delays.append(seconds)

    async def _spawn(self, argv, stdin):
        self.calls.append(argv)
        return self.cluster.respond(argv[1:], stdin)


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        MAX_ATTEMPTS=3,
        RETRY_DELAY_SECONDS=2.0,
        POLL_INTERVAL_SECONDS=5.0,
        TIMEOUT_SECONDS=60,
    )


@pytest.fixture
def cluster():
    return FakeCluster()


@pytest.fixture
def clock(cluster):
    return FakeClock(cluster)


@pytest.fixture
def gateway(settings, cluster):
    return ScriptedGateway(settings, cluster)


@pytest.fixture
def poller(gateway, settings, clock):
    return ConvergencePoller(gateway, settings, clock=clock, sleep=clock.sleep)
