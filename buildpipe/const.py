DEFAULT_BRANCH = 'main'
DEFAULT_TARGET = 'aarch64-unknown-linux-gnu'
DEFAULT_CHANNEL = 'nightly'
DEFAULT_PROFILE = 'minimal'

DEFAULT_BUILD_COMMAND = 'cargo build --target {target} --verbose'
DEFAULT_TEST_COMMAND = 'cargo test --target {target} --verbose'
DEFAULT_ENV = {'CARGO_TERM_COLOR': 'always'}
