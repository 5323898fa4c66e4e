import pulumi
from n8nstack import provision


def main():
    try:
        builder = provision(pulumi.Config())
    except Exception as e:
        pulumi.log.error(f"Failed during resource build: {e}")
        raise

    for name, value in builder.outputs.items():
        try:
            pulumi.export(name, value)
        except Exception as e:
            pulumi.log.warn(f"Failed to export output '{name}': {e}")

if __name__ == "__main__":
    main()
