"""Resource files and configuration templates."""


def get_default_config() -> str:
    """Return default configuration YAML content."""
    return """# metapipe configuration file
# Command line flags override these values.

runtime:
  log_level: "INFO"
  log_file: ~              # default: <log_root>/<study_name>/<sample>_meta.log
  log_root: "~/logs"
  keep_scratch: false
  enable_progress: false
  decompression_expansion_factor: 4.0

paths:
  manifest: "~/metagenomics/manifest.tsv"
  output_base_dir: "metagenomics/out"
  persistent_root: "~"
  shared_scratch_root: "/scratch"
  save_to_scratch: false
  study_name: "metagenomics"

performance:
  threads: ~               # default: scheduler slot count

scheduler:
  task_index_override_var: "TASK_INDEX"
  task_id_vars: ["SGE_TASK_ID", "SLURM_ARRAY_TASK_ID"]
  threads_vars: ["NSLOTS", "SLURM_CPUS_PER_TASK"]
  job_id_vars: ["JOB_ID", "SLURM_JOB_ID"]
  scratch_var: "TMPDIR"
  accounting_command: ["qstat", "-j", "{job_id}"]

databases:
  host_index: "~/metagenomics/databases/mouse_C57BL_6NJ"
  kraken2_db: "/wynton/group/databases/kraken2"
  bracken_db: "~/metagenomics/databases/bracken_db"
  stage_host_index: true
  stage_kraken2_db: false
  stage_bracken_db: true

tools:
  kneaddata:
    trimmomatic_options: "SLIDINGWINDOW:4:20 MINLEN:50"
    bowtie2_options: "--very-sensitive-local --dovetail"
    run_trim_repetitive: true
    max_memory: "4000m"
    fastqc: "fastqc"
    trimmomatic_dir: ~     # default: $CONDA_PREFIX/share/trimmomatic
    verbose: true
  kraken2:
    confidence: 0.5
    use_names: true
  bracken:
    read_length: 100
    threshold: 10

transfer:
  enabled: false
  dest_dir: ""
  relay_host: "dt1.wynton.ucsf.edu"
  ssh_key: "~/.ssh/wynton-dtn-key"
  netrc: "~/.netrc"
  remote_command: "~/utils/wyntonBoxTransfer.sh"
  mode: "inline"           # inline | detached
  max_retries: 5
  retry_wait: 10.0
  max_concurrent: 35
  slot_dir: "~/.metapipe/transfer_slots"
  slot_wait_seconds: 1800.0
  slot_stale_seconds: 43200.0
"""
