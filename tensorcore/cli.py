"""
Command-line interface for tensorcore.

This module provides CLI commands for benchmarking the pooled allocator
and reporting the devices visible to the runtime.
"""

import argparse
import json
import sys
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List

from .core.device import CPU, DeviceDescriptor, get_device_info
from .exceptions import DeviceError
from .factory import create_context
from .memory.backends import accelerator as _accelerator


def benchmark_command():
    """CLI command for benchmarking allocate/return cycles."""
    parser = argparse.ArgumentParser(description='Benchmark tensorcore allocator throughput')
    parser.add_argument('--device', type=parse_device, default='cpu',
                        help='Device to allocate on: cpu or accelerator:N')
    parser.add_argument('--size', type=int, nargs='+', default=[64, 4096, 1 << 20],
                        help='Allocation sizes in bytes')
    parser.add_argument('--iterations', type=int, default=1000,
                        help='Allocate/return cycles per thread')
    parser.add_argument('--threads', type=int, default=4,
                        help='Number of concurrent worker threads')
    parser.add_argument('--output', type=str, help='Output file for results')

    args = parser.parse_args()

    with create_context() as context:
        results = run_benchmark(context.allocator, args.device, args.size, args.iterations, args.threads)

    if args.output:
        with open(args.output, 'w') as f:
            json.dump(results, f, indent=2)
    else:
        print(json.dumps(results, indent=2))


def devices_command():
    """CLI command listing the devices tensorcore can target."""
    parser = argparse.ArgumentParser(description='List tensorcore devices')
    parser.add_argument('--output', type=str, help='Output file for device information')

    args = parser.parse_args()

    devices = [CPU]
    if _accelerator.accelerator_available():
        devices.extend(DeviceDescriptor.accelerator(i) for i in range(_accelerator.accelerator_device_count()))

    report = {str(device): describe_device(device) for device in devices}

    if args.output:
        with open(args.output, 'w') as f:
            json.dump(report, f, indent=2)
    else:
        print(json.dumps(report, indent=2))


def parse_device(text: str) -> DeviceDescriptor:
    """argparse ``type`` for ``cpu`` or ``accelerator:N`` (``accelerator`` alone means index 0)."""
    name, _, index = text.strip().lower().partition(':')
    if name == 'cpu' and not index:
        return CPU
    if name == 'accelerator':
        try:
            return DeviceDescriptor.accelerator(int(index) if index else 0)
        except (ValueError, DeviceError) as e:
            raise argparse.ArgumentTypeError(f"Invalid device {text!r}: {e}") from e
    raise argparse.ArgumentTypeError(f"Unknown device: {text!r}")


def describe_device(device: DeviceDescriptor) -> Dict[str, Any]:
    info = get_device_info(device)
    return {
        'name': info.name,
        'memory_capacity': info.memory_capacity,
        'max_threads_per_block': info.max_threads_per_block,
        'warp_size': info.warp_size,
        'compute_capability': list(info.compute_capability),
        'compute_capability_score': info.compute_capability_score,
        'unified_addressing': info.unified_addressing,
    }


def run_benchmark(
    allocator,
    device: DeviceDescriptor,
    sizes: List[int],
    iterations: int,
    threads: int
) -> Dict[str, Any]:
    """Run allocate/return cycles on ``threads`` workers and time them."""
    results = {
        'config': {
            'device': str(device),
            'sizes': sizes,
            'iterations': iterations,
            'threads': threads,
        },
        'results': {}
    }

    print(f"Running {iterations} cycles on {threads} threads against {device}", file=sys.stderr)

    def worker(_: int) -> float:
        start_time = time.perf_counter()
        for i in range(iterations):
            size = sizes[i % len(sizes)]
            ptr = allocator.allocate(size, device)
            allocator.return_to_pool(ptr, size, device)
        return time.perf_counter() - start_time

    start_time = time.perf_counter()
    with ThreadPoolExecutor(max_workers=threads, thread_name_prefix='tensorcore_bench') as executor:
        thread_times = list(executor.map(worker, range(threads)))
    wall_time = time.perf_counter() - start_time

    total_cycles = iterations * threads
    results['results'] = {
        'wall_time': wall_time,
        'thread_times': {
            'mean': sum(thread_times) / len(thread_times),
            'min': min(thread_times),
            'max': max(thread_times),
        },
        'throughput': {
            'cycles_per_second': total_cycles / wall_time if wall_time else 0.0,
        },
        'allocator': allocator.stats(),
    }

    return results


if __name__ == '__main__':
    if len(sys.argv) < 2:
        print("Usage: python -m tensorcore.cli <command>")
        print("Commands: benchmark, devices")
        sys.exit(1)

    command = sys.argv[1]
    sys.argv = [sys.argv[0]] + sys.argv[2:]

    if command == 'benchmark':
        benchmark_command()
    elif command == 'devices':
        devices_command()
    else:
        print(f"Unknown command: {command}")
        sys.exit(1)
