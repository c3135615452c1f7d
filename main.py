from leasekeeper import Reconciler, universal_factory
from leasekeeper.storage import FileStore



def main():
    # Example wiring of the reconciler against EC2 and the default record store
    aws_config = {"region_name": "us-east-1"}

    compute = universal_factory("aws", aws_config)
    store = FileStore()

    report = Reconciler(compute, store).run_once()
    print(f"Reconciled {report.records} instance(s): {report.stopped} stopped, {report.started} started")

if __name__ == "__main__":
    main()
