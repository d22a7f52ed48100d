# cpuinfo

Describes a processor: vendor, brand name, family/model/stepping, core and
thread counts, cache sizes, clock frequencies, SGX, AMD memory encryption,
performance-monitoring counters and a large set of instruction-set
features for x86/x64 and arm64.

## Command line

```
cpuinfo
```

prints a readable report of the machine as detected by `get_cpu()`.
Other forms:

```
cpuinfo --json                  # everything as indented JSON, plus Features and X64Level
cpuinfo --check-level 3         # exit status 0 if x86-64 level 3 is supported, 1 if not
cpuinfo --cpu.disable AVX2,FMA3 # hide features from the report
cpuinfo --cpu.features          # print "cpu features: ..." and exit with status 1
cpuinfo --cpu.arm               # on arm64, read the MIDR register even when the OS does not advertise CPUID access
```

`--check-level` accepts 1 to 4; larger values are rejected with exit
status 1. The single-dash forms `-json` and `-check-level` are accepted too.

## Library

```python
from cpuinfo.detect import get_cpu
from cpuinfo.features import FeatureID, combine_features, parse_feature

cpu = get_cpu()
print(cpu.brand_name, cpu.vendor_id, cpu.physical_cores, cpu.logical_cores)
print(", ".join(cpu.feature_names()))
print("x86-64 level:", cpu.x64_level())

if cpu.supports(FeatureID.SSE, FeatureID.SSE2):
    print("SSE2 available")

wanted = combine_features(FeatureID.AVX, FeatureID.AVX2, FeatureID.FMA3)
if cpu.has_all(wanted):
    print("AVX2 + FMA3 path")
```

- `get_cpu()` detects once and returns the same `CPUInfo` afterwards;
  `detect()` returns a fresh one each call and takes `disable`
  (a comma separated string or an iterable of names) and `safe`.
- `CPUInfo` offers `has`, `supports`, `any_of`, `has_all`, `x64_level`,
  `enable`, `disable`, `is_vendor`, `is_vm`, `feature_names` and `to_dict`
  (a plain dictionary suitable for JSON).
- `parse_feature("avx2")` looks a feature up by name in any case and
  returns `FeatureID.UNKNOWN` for names it does not know.
- `FeatureSet` is a bit-mask set of `FeatureID` values with `set`,
  `set_if`, `unset`, `update`, `has_all`, `has_any`, `names`, membership,
  length and iteration in identifier order.

### Detection from a register dump

x86 CPUID register values are read through a `CpuidSource`
(`cpuinfo.registers`). A dump in the common
`CPUID 00000000: eax-ebx-ecx-edx` text form can be replayed through
`DumpSource`; only the first processor in the text is read:

```python
from cpuinfo.detect import detect
from cpuinfo.registers import DumpSource

with open("dump.txt") as fh:
    source = DumpSource.from_text(fh.read())
info = detect(source)
print(info.brand_name, info.x64_level(), info.cache)
```

`NullSource` answers every query with zeros. The decoders in `cpuinfo.x86`,
`cpuinfo.x86_features` and `cpuinfo.arm64` can also be called directly
with register values.

## What it does not do

- The package cannot execute the CPUID instruction itself. On an x86
  machine, `detect()` without a source (and so `get_cpu()` and the
  `cpuinfo` command) returns a `CPUInfo` with default values and no
  features; pass a `CpuidSource` that supplies real register values to
  get a full description.
- On arm64 the detection uses what the operating system exposes:
  `/proc/self/auxv` and the MIDR value under `/sys` on Linux, `sysctl`
  on macOS, and the CPU count elsewhere. The ID_AA64 feature registers
  are not read; `decode_arm_registers` decodes them only when given
  their values.
- There is no time-stamp counter reading, no current-CPU lookup and no
  SVE vector-length query.