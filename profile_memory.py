from memory_profiler import profile
from tourbooking.main import app
from fastapi.testclient import TestClient

# Create a test client for the FastAPI app
client = TestClient(app)


@profile
def run_scenario():
    """
    Simple scenario to exercise the read endpoints while tracking memory.
    Nothing is asserted here; it's only for profiling.
    """
    client.get("/health")
    client.get("/api/v1/tours/")
    client.get("/api/v1/tours/?sort=-ratingsAverage,price&fields=name,price&limit=10")
    client.get("/api/v1/tours/top-5-cheap")
    client.get("/api/v1/tours/tour-stats")
    client.get("/api/v1/tours/distances/34.111745,-118.113491/unit/mi")


if __name__ == "__main__":
    run_scenario()
