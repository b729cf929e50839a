import argparse
import errno
import os
import signal
import sys
import threading

try:
    import validators

    import extractor
    from download import (
        DEFAULT_TIMEOUT,
        FetchError,
        Fetcher,
        FetchOptions,
        SOURCEMAP_TYPE,
        decode_data_uri,
        get_linked_files,
        get_source_map_url,
        is_valid_proxy,
        parse_header,
        resolve_url,
        url_file_name,
    )
    from printer import INFO, WARN, Printer
except ModuleNotFoundError as mnf:
    print(f"Module not found '{mnf.name}', please run:")
    print(f"'pip install {mnf.name}' OR 'pip install -e .'")
    sys.exit(1)


COMMANDS = ("extract", "all")
DEFAULT_COMMAND = "extract"
EXIT_CANCELED = 130


def build_parser():
    shared = argparse.ArgumentParser(add_help=False)
    shared.add_argument(
        "-o", "--output", help="Output the files to given directory", required=True
    )
    shared.add_argument(
        "--ignore-certificate-errors",
        help="Don't verify TLS certificates",
        action="store_true",
        dest="insecure",
    )
    shared.add_argument("--proxy", help="Proxy URL, e.g. http://127.0.0.1:8080")
    shared.add_argument(
        "--header",
        help="Extra request header as 'NAME: VALUE', can be set multiple times",
        action="append",
        default=[],
        dest="headers",
    )
    shared.add_argument(
        "--create-top-directory",
        help="Extract every source map into its own directory named after the map",
        action="store_true",
    )
    shared.add_argument(
        "--timeout",
        help=f"Request timeout in seconds (default={DEFAULT_TIMEOUT})",
        type=float,
        default=DEFAULT_TIMEOUT,
    )
    shared.add_argument("-q", "--quiet", help="Suppress output", action="store_true")
    shared.add_argument("-v", "--verbose", help="Print verbose output", action="store_true")
    shared.add_argument("--no-color", help="Don't color the output", action="store_true")

    parser = argparse.ArgumentParser(
        prog="sourcemapper",
        description="Download source maps and extract the original sources.",
    )
    commands = parser.add_subparsers(dest="command")

    extract = commands.add_parser(
        "extract", parents=[shared], help="Extract the sources of given source maps"
    )
    extract.add_argument(
        "-mu",
        "--map-url",
        help="URL of the source map, can be set multiple times",
        action="append",
        dest="map_urls",
        required=True,
    )

    all_web = commands.add_parser(
        "all",
        parents=[shared],
        help="Download the page, its scripts, stylesheets and their source maps",
    )
    all_web.add_argument("-u", "--url", help="URL of the web page", required=True)
    all_web.add_argument(
        "-e", "--extract", help="Extract the source maps", action="store_true"
    )
    return parser


def parse_args(argv):
    """Parse `argv`, running `extract` when no command is given"""
    argv = list(argv)
    if argv and argv[0] not in COMMANDS and argv[0] not in ("-h", "--help"):
        argv.insert(0, DEFAULT_COMMAND)
    return build_parser().parse_args(argv)


def show_header(printer):
    printer.plain("sourcemapper")
    printer.plain("Start with --help to see all available configuration options.")
    printer.plain()


def validate_url(url, printer):
    """Validate `url`

    Args:
        `url` (`str`): the URL
    """
    if not validators.url(url):
        printer.error(f"'{url}' is not a valid url")
        sys.exit(errno.EINVAL)


def validate_dir(dir, printer):
    """validate given output directory

    Args:
        `dir` (`str`): the to validate directory
    """
    if os.path.exists(dir) and not os.path.isdir(dir):
        printer.error(f"'{dir}' exists and is not a directory!")
        sys.exit(errno.ENOTDIR)


def build_fetch_options(args, printer):
    headers = []
    for header in args.headers:
        try:
            headers.append(parse_header(header))
        except ValueError as e:
            printer.error(str(e))
            sys.exit(errno.EINVAL)

    if args.proxy and not is_valid_proxy(args.proxy):
        printer.error("Failed to parse proxy URL.")
        sys.exit(errno.EINVAL)

    return FetchOptions(
        headers=headers,
        proxy=args.proxy,
        insecure=args.insecure,
        timeout=args.timeout,
    )


def save_url_content(output, url, content, printer) -> bool:
    """Save `content` downloaded from `url` into `output`

    Returns:
        `bool`: whether the file was written
    """
    file_path = os.path.join(output, url_file_name(url))
    printer.out(f"Creating {file_path}.")
    try:
        extractor.write_file(file_path, content)
    except (OSError, ValueError) as e:
        printer.error(f"Failed to create {file_path}: {e}")
        return False
    return True


def extract_maps(args, fetcher, printer, cancel_event) -> bool:
    """Fetch and extract every `--map-url`

    Returns:
        `bool`: whether any of the maps failed
    """
    failed = False
    for url in args.map_urls:
        if cancel_event.is_set():
            break
        printer.info(f"Processing url: {url}")
        printer.plain("-" * 20)
        try:
            doc = fetcher.fetch(url, "application/json")
        except FetchError as e:
            printer.error(str(e))
            failed = True
            continue
        if extractor.extract(
            doc, url, args.output, args.create_top_directory, cancel_event, printer
        ):
            failed = True
    return failed


class PageScanner:
    def __init__(self, fetcher, output, printer, cancel_event) -> None:
        """Finds the source maps of the scripts and stylesheets linked in a page

        Everything downloaded on the way (page, assets, maps) is saved into `output`.
        """
        self.fetcher = fetcher
        self.output = output
        self.printer = printer
        self.cancel_event = cancel_event
        self.failures = 0

    def _fail(self, message):
        self.printer.error(message)
        self.failures += 1

    def _fetch(self, url, accept):
        try:
            return self.fetcher.fetch(url, accept)
        except FetchError as e:
            self._fail(str(e))
            return None

    def _save(self, url, content):
        if not save_url_content(self.output, url, content, self.printer):
            self.failures += 1

    def load_source_map(self, map_url, type):
        if map_url.startswith("data:"):
            try:
                return decode_data_uri(map_url)
            except ValueError as e:
                self._fail(f"Failed to decode inline sourcemap: {e}")
                return None
        content = self._fetch(map_url, type.mime_type)
        if content is not None:
            self._save(map_url, content)
        return content

    def source_maps(self, page_url):
        """Yield `(map_url, content)` for every source map found from `page_url`"""
        html = self._fetch(page_url, "text/html")
        if html is None:
            return
        self._save(page_url, html)

        linked_files = get_linked_files(html, page_url)
        self.printer.verbose(f"==== Found {len(linked_files)} JS/CSS files ====")
        for file_url, type in linked_files:
            if self.cancel_event.is_set():
                return
            self.printer.verbose(
                f"Finding sourcemaps in: {file_url}",
                WARN if type is SOURCEMAP_TYPE.JS else INFO,
            )

            content = self._fetch(file_url, type.mime_type)
            if content is None:
                continue
            self._save(file_url, content)

            map_ref = get_source_map_url(content, type)
            if map_ref is None:
                self.printer.warn(f"Failed to find sourcemap url in {file_url}")
                continue

            map_url = resolve_url(map_ref, file_url)
            inline = map_url.startswith("data:")
            self.printer.out(f"Found map: {'inline data URI' if inline else map_url}")
            map_content = self.load_source_map(map_url, type)
            if map_content is None:
                continue
            # inline maps are named after the asset that carries them
            yield (file_url if inline else map_url), map_content


def scan_page(args, fetcher, printer, cancel_event) -> bool:
    """Download everything linked from `--url`, extracting the maps with `--extract`

    Returns:
        `bool`: whether anything failed
    """
    scanner = PageScanner(fetcher, args.output, printer, cancel_event)
    failed = False
    for map_url, content in scanner.source_maps(args.url):
        if cancel_event.is_set():
            break
        if args.extract:
            printer.info(f"Extracting source map: {map_url}")
            output = os.path.join(args.output, "extract")
            if extractor.extract(
                content, map_url, output, args.create_top_directory, cancel_event, printer
            ):
                failed = True
    return failed or scanner.failures > 0


def install_cancel_handler(cancel_event, printer):
    """Set `cancel_event` on the first Ctrl+C, interrupt on the second"""

    def handler(signum, frame):
        if cancel_event.is_set():
            raise KeyboardInterrupt
        printer.warn("Canceling...")
        cancel_event.set()

    return signal.signal(signal.SIGINT, handler)


def main(argv=None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    if args.command is None:
        build_parser().print_help()
        return errno.EINVAL

    printer = Printer(quiet=args.quiet, verbose=args.verbose, color=not args.no_color)
    show_header(printer)

    if args.verbose:
        printer.info("Using following options: ")
        for arg, value in vars(args).items():
            printer.info(f"{arg}: {value}")

    urls = args.map_urls if args.command == "extract" else [args.url]
    for url in urls:
        validate_url(url, printer)
    validate_dir(args.output, printer)
    fetcher = Fetcher(build_fetch_options(args, printer))

    if not extractor.ensure_directory(args.output, printer):
        return 1

    cancel_event = threading.Event()
    previous_handler = install_cancel_handler(cancel_event, printer)
    try:
        if args.command == "extract":
            failed = extract_maps(args, fetcher, printer, cancel_event)
        else:
            failed = scan_page(args, fetcher, printer, cancel_event)
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    if cancel_event.is_set():
        return EXIT_CANCELED
    if failed:
        printer.error("RESULT: Some sources were not downloaded!")
        return 1
    printer.out("RESULT: Done")
    return 0


def run():
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        sys.exit(EXIT_CANCELED)


if __name__ == "__main__":
    run()
