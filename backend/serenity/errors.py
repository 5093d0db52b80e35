# error taxonomy for the dashboard pipeline
# data access failures are fatal to a request, agent failures are local to one agent


class DashboardError(Exception):
    """base class for dashboard pipeline errors"""


class DataAccessError(DashboardError):
    """a query against the persisted store failed or could not be issued"""


class AgentOutputError(DashboardError):
    """an insight agent's output could not be parsed into its expected shape"""

    def __init__(self, role: str, message: str):
        super().__init__(f"{role}: {message}")
        self.role = role


class GenerationBackendError(DashboardError):
    """the narrative generation backend is unreachable, misconfigured, or failed"""
