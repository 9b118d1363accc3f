"""
HanPin 命令行工具
"""

import argparse
import sys

import orjson


def _build_converter(args):
    from hanpin import create_converter
    return create_converter(data_dir=args.data_dir)


def main(argv=None):
    """命令行入口"""
    parser = argparse.ArgumentParser(
        prog="hanpin",
        description="HanPin - 汉字转拼音引擎",
    )
    parser.add_argument("-d", "--data-dir", default=None, help="字典目录 (默认: HANPIN_DATA_DIR 或纯内存)")

    subparsers = parser.add_subparsers(dest="command", help="可用命令")

    # server 命令
    server_parser = subparsers.add_parser("server", help="启动 API 服务")
    server_parser.add_argument("--host", default="0.0.0.0", help="绑定地址 (默认: 0.0.0.0)")
    server_parser.add_argument("--port", type=int, default=3000, help="端口 (默认: 3000)")

    # convert 命令
    convert_parser = subparsers.add_parser("convert", help="汉字转拼音")
    convert_parser.add_argument("text", help="待转换文本")
    convert_parser.add_argument("-s", "--separator", default=" ", help="分隔符 (默认: 空格)")
    convert_parser.add_argument("-t", "--tone", action="store_true", help="输出声调")
    convert_parser.add_argument("-m", "--special-chars", default="",
                                choices=["", "keep", "delete", "replace"], help="特殊字符处理方式")

    # slug 命令
    slug_parser = subparsers.add_parser("slug", help="生成 URL slug")
    slug_parser.add_argument("text", help="待转换文本")
    slug_parser.add_argument("-s", "--separator", default="-", help="分隔符 (默认: -)")

    # merge / demote 命令
    merge_parser = subparsers.add_parser("merge", help="合并自学习字典")
    merge_parser.add_argument("-f", "--force", action="store_true", help="忽略阈值和时间间隔")
    demote_parser = subparsers.add_parser("demote", help="降级低频常用字")
    demote_parser.add_argument("-f", "--force", action="store_true", help="忽略时间间隔和负载检查")

    # stats 命令
    subparsers.add_parser("stats", help="显示统计信息")

    # 自定义字典
    add_parser = subparsers.add_parser("add-custom", help="添加自定义读音")
    add_parser.add_argument("word", help="单字或词语")
    add_parser.add_argument("pinyin", help="拼音，多字词用空格分隔")
    add_parser.add_argument("--no-tone", action="store_true", help="只写入无调字典")
    remove_parser = subparsers.add_parser("remove-custom", help="删除自定义读音")
    remove_parser.add_argument("word", help="单字或词语")

    # version 命令
    subparsers.add_parser("version", help="显示版本")

    args = parser.parse_args(argv)

    if args.command == "server":
        from hanpin.api.server import main as server_main
        import os
        os.environ["HOST"] = args.host
        os.environ["PORT"] = str(args.port)
        if args.data_dir:
            os.environ["HANPIN_DATA_DIR"] = args.data_dir
        server_main()

    elif args.command == "convert":
        with _build_converter(args) as converter:
            print(converter.convert(args.text, args.separator, args.tone, args.special_chars))

    elif args.command == "slug":
        with _build_converter(args) as converter:
            print(converter.slug(args.text, args.separator))

    elif args.command == "merge":
        with _build_converter(args) as converter:
            report = converter.execute_merge(force=args.force)
        print(orjson.dumps(report.to_dict(), option=orjson.OPT_INDENT_2).decode())
        if report.fail:
            sys.exit(1)

    elif args.command == "demote":
        with _build_converter(args) as converter:
            demoted = converter.demote(force=args.force)
        print(f"降级 {len(demoted)} 个字: {''.join(demoted)}")

    elif args.command == "stats":
        with _build_converter(args) as converter:
            stats = converter.stats()
        print(orjson.dumps(stats, option=orjson.OPT_INDENT_2).decode())

    elif args.command == "add-custom":
        with _build_converter(args) as converter:
            try:
                converter.add_custom(args.word, args.pinyin, with_tone=not args.no_tone)
            except ValueError as e:
                print(f"错误: {e}", file=sys.stderr)
                sys.exit(2)
        print(f"已添加: {args.word} → {args.pinyin}")

    elif args.command == "remove-custom":
        with _build_converter(args) as converter:
            removed = converter.remove_custom(args.word)
        print(f"已删除: {args.word}" if removed else f"未找到: {args.word}")

    elif args.command == "version":
        from hanpin import __version__
        print(f"HanPin v{__version__}")

    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
