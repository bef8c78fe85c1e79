# tfworkspace

Building blocks for driving Terraform workspaces from Python. The package
writes the desired configuration (`main.tf.json`) and a seed state
(`terraform.tfstate`) for a managed resource, records which CLI operation is
running, turns Terraform's JSON log output into typed errors, and schedules
shared native provider processes.

It has no dependencies outside the standard library.

## Installation

```
pip install tfworkspace
```

To run the test suite:

```
pip install "tfworkspace[test]"
pytest
```

## Modules

### `tfworkspace.tferrors`

- `ApplyFailed`, `DestroyFailed`, `RefreshFailed` and `PlanFailed` are
  subclasses of `TerraformError`.
- `new_apply_failed(logs)`, `new_destroy_failed(logs)`,
  `new_refresh_failed(logs)` and `new_plan_failed(logs)` build these errors
  from newline-separated JSON log lines, given as bytes or str.
  - Only lines at level `error` are used.
  - An error diagnostic with a summary is shown as `summary: detail`.
  - Any other line is shown by its `@message`.
- `parse_terraform_logs(logs)` returns a list of `TerraformLog` records. It
  raises `ValueError` on a malformed line.
- `RetryScheduleError` is raised when a shared provider's reuse budget is
  exceeded.
- `is_apply_failed(err)`, `is_destroy_failed(err)`, `is_refresh_failed(err)`,
  `is_plan_failed(err)` and `is_retry_schedule_error(err)` check an error and
  the chain of errors it was raised from.

```python
from tfworkspace.tferrors import new_apply_failed, is_apply_failed

logs = b'{"@level":"error","@message":"Error: boom","diagnostic":{"severity":"error","summary":"boom","detail":"details"}}'
err = new_apply_failed(logs)
assert is_apply_failed(err)
print(err)  # apply failed: boom: details
```

### `tfworkspace.operation`

`Operation` is a thread-safe record of the current CLI operation.

- `mark_start(op_type)` returns `False` while another operation is still running.
- `mark_end()` and `flush()` end the operation and clear the record.
- `is_running()` and `is_ended()` report the state of the operation.
- `start_time()` and `end_time()` return the times. They raise `RuntimeError`
  when those times are not set.

### `tfworkspace.timeouts`

`OperationTimeouts(read, create, update, delete)` holds `timedelta` values.

- `as_parameter()` gives the resource `timeouts` block, for example
  `{"read": "3m0s"}`.
- `as_metadata()` gives the same timeouts in nanoseconds.
- `insert_timeouts_meta(existing_meta, timeouts)` merges the timeouts into
  private state metadata under the key `TF_META_TIMEOUT_KEY`.
- `format_duration(value)` renders a duration in forms such as `2m0s`,
  `1h0m0s` or `500ms`.

```python
from datetime import timedelta
from tfworkspace.timeouts import OperationTimeouts

timeouts = OperationTimeouts(read=timedelta(minutes=3))
print(timeouts.as_parameter())  # {'read': '3m0s'}
print(timeouts.as_metadata())   # {'read': 180000000000}
```

### `tfworkspace.finalizer`

`WorkspaceFinalizer(store, finalizer)` sits in front of another finalizer.

- `remove_finalizer(obj)` first calls `store.remove(obj)` and then the
  underlying `Finalizer`. If the store fails, it raises a `RuntimeError` that
  starts with `cannot remove workspace from the store`.
- `add_finalizer(obj)` delegates directly.

### `tfworkspace.provider_runner`

`SharedProvider` starts a native provider through an `Executor` that you
supply. The executor's `command(path, args, env)` returns a `ProcessHandle`.

- `start()` returns the reattach configuration string once a line of the form
  `...unix|<address>|grpc...` appears on the process output.
  - If the configuration is already known, it is returned without starting
    anything.
  - `start()` raises `TimeoutError` after `reattach_timeout`, one minute by
    default.
  - It raises `RuntimeError` if no executor is configured.
- `stop()` stops the process. It raises `RuntimeError` if the process was
  never started.

`NoOpProviderRunner` starts nothing and returns an empty configuration.

### `tfworkspace.provider_scheduler`

Provider handles are strings.

- `SharedProviderScheduler(ttl, logger=None, runner_options=None)` keeps one
  `SharedProvider` per handle, built with `runner_options` as keyword
  arguments.
  - A runner is reused until its invocation count reaches `ttl`.
  - It then raises `RetryScheduleError` while it is over budget and still in
    use.
  - Once it is no longer in use, it is replaced.
- `start(handle)` returns an `InUse` tracker and the reattach configuration.
- `WorkspaceProviderScheduler` shares one runner between the calls of a single
  workspace. Its `stop(handle)` stops the runner in the background once every
  user has called `decrement()`.
- `NoOpProviderScheduler` and `NoOpInUse` schedule nothing.

### `tfworkspace.files`

- `Terraformed` describes a managed resource: name, uid, resource type,
  annotations, parameters, observation and a deletion flag.
- `ResourceConfig` carries its `ExternalName` hooks and `OperationTimeouts`.
- `Setup` and `ProviderRequirement` describe the Terraform version, the
  provider source and version, and the provider configuration.
  - `Setup.map()` returns the setup as a plain mapping.
  - `Setup.filter_sensitive_information(text)` replaces every non-empty string
    configuration value in `text` with `REDACTED`.
- `to_provider_handle(configuration)` hashes a configuration into a stable
  handle. It uses the ordered pairs from `sorted_key_value_pairs`.
- `FileProducer(resource, setup, directory, config, ignore_changes=())`
  provides:
  - `write_main_tf()` writes `main.tf.json` and returns the provider handle.
  - `ensure_tf_state(tf_id)` writes `terraform.tfstate`. It does so only when
    the state has no resource ID and the resource is not being deleted.
  - `is_state_empty()` reports whether the state holds a resource ID.
  - `need_provider_upgrade()` reports whether the existing `main.tf.json` pins
    a different provider version.
- `StateV4` models a version 4 state file, with `to_json()`,
  `StateV4.from_json(data)` and `get_attributes()`.

The directory passed to `FileProducer` must already exist.

```python
import tempfile
from tfworkspace.files import FileProducer, ProviderRequirement, ResourceConfig, Setup, Terraformed

resource = Terraformed(
    name="example",
    resource_type="aws_s3_bucket",
    annotations={"crossplane.io/external-name": "my-bucket"},
    parameters={"region": "us-east-1"},
)
setup = Setup(requirement=ProviderRequirement(source="hashicorp/aws", version="4.15.1"))

with tempfile.TemporaryDirectory() as directory:
    producer = FileProducer(resource, setup, directory, ResourceConfig())
    producer.write_main_tf()
    producer.ensure_tf_state("my-bucket")
    print(producer.is_state_empty())  # False
```

## What the package does not do

The package never starts processes itself. It has no object that runs
`terraform apply`, `plan`, `destroy`, `refresh` or `import` in a workspace
directory. It has no store that keeps one workspace per resource, and it
offers no command-line program.

Provider processes are started only through the `Executor` you pass to
`SharedProvider`. Running the Terraform CLI against the files that
`FileProducer` writes is left to the caller.