#!/usr/bin/env python3

from __future__ import annotations

import pathlib
import textwrap
import unittest

import rst_gen
from rst_gen import (
    Array,
    Basic,
    Channel,
    FuncType,
    InterfaceType,
    Literal,
    Map,
    Named,
    NoReset,
    Pointer,
    Slice,
    StructField,
    StructType,
)

INT = Basic("integer", "int")
STRING = Basic("string", "string")
NONIL = rst_gen.POLICY_NONIL
NILABLE = rst_gen.POLICY_NILABLE


def load(source: str, name: str = "input.go") -> rst_gen.Package:
    text = textwrap.dedent(source).strip() + "\n"
    return rst_gen.resolve_package([rst_gen.parse_source(pathlib.Path(name), text)])


def generated(source: str) -> str:
    package = load(source)
    return rst_gen.render_file(package.name, rst_gen.generate(package))


def go_source(expr: rst_gen.ResetExpression) -> str:
    text, _ = rst_gen.reset_source(expr)
    return text


class SynthesizeTests(unittest.TestCase):
    def test_integer_and_string_ignore_policy(self) -> None:
        for policy in (NILABLE, NONIL):
            self.assertEqual(rst_gen.synthesize(Basic("integer", "int64"), policy), Literal("0"))
            self.assertEqual(rst_gen.synthesize(Basic("integer", "byte"), policy), Literal("0"))
            self.assertEqual(rst_gen.synthesize(STRING, policy), Literal('""'))

    def test_float_bool_and_complex_have_no_reset(self) -> None:
        self.assertEqual(rst_gen.synthesize(Basic("float", "float64"), NONIL), NoReset("float"))
        self.assertEqual(rst_gen.synthesize(Basic("boolean", "bool"), NILABLE), NoReset("boolean"))
        self.assertEqual(rst_gen.synthesize(Basic("other", "complex128"), NILABLE), NoReset("other"))

    def test_slice_follows_policy(self) -> None:
        expr = rst_gen.synthesize(Slice(INT), NONIL)
        self.assertEqual(expr.kind, rst_gen.CONSTRUCT_MAKE)
        self.assertEqual(expr.of_type, Slice(INT))
        self.assertEqual(go_source(expr), "make([]int, 0)")
        self.assertIs(rst_gen.synthesize(Slice(INT), NILABLE), rst_gen.NIL)

    def test_map_follows_policy(self) -> None:
        expr = rst_gen.synthesize(Map(STRING, INT), NONIL)
        self.assertEqual(expr.kind, rst_gen.CONSTRUCT_MAKE)
        self.assertEqual(go_source(expr), "make(map[string]int)")
        self.assertIs(rst_gen.synthesize(Map(STRING, INT), NILABLE), rst_gen.NIL)

    def test_channel_rebuilt_bidirectional(self) -> None:
        self.assertEqual(go_source(rst_gen.synthesize(Channel(INT), NONIL)), "make(chan int)")
        self.assertIs(rst_gen.synthesize(Channel(INT), NILABLE), rst_gen.NIL)

    def test_pointer_to_named_struct(self) -> None:
        node = Named("Node", underlying=StructType())
        expr = rst_gen.synthesize(Pointer(node), NONIL)
        self.assertEqual(expr.kind, rst_gen.CONSTRUCT_ADDRESS)
        self.assertIs(expr.of_type, node)
        self.assertEqual(go_source(expr), "&Node{}")
        self.assertIs(rst_gen.synthesize(Pointer(node), NILABLE), rst_gen.NIL)

    def test_pointer_to_basic_allocates_zero_value(self) -> None:
        expr = rst_gen.synthesize(Pointer(INT), NONIL)
        self.assertEqual(expr.kind, rst_gen.CONSTRUCT_ADDRESS)
        self.assertEqual(expr.of_type, INT)
        self.assertEqual(go_source(expr), "new(int)")
        self.assertIs(rst_gen.synthesize(Pointer(INT), NILABLE), rst_gen.NIL)

    def test_array_ignores_policy(self) -> None:
        for policy in (NILABLE, NONIL):
            expr = rst_gen.synthesize(Array(STRING, 3), policy)
            self.assertEqual(expr.kind, rst_gen.CONSTRUCT_COMPOSITE)
            self.assertEqual(go_source(expr), "[3]string{}")

    def test_named_construct_keeps_declared_name(self) -> None:
        set_type = Named("Set", underlying=Map(STRING, Basic("boolean", "bool")))
        names = Named("Names", underlying=Slice(STRING))
        grid = Named("Grid", underlying=Array(INT, 9))

        expr = rst_gen.synthesize(set_type, NONIL)
        self.assertIs(expr.of_type, set_type)
        self.assertEqual(go_source(expr), "make(Set)")
        self.assertEqual(go_source(rst_gen.synthesize(names, NONIL)), "make(Names, 0)")
        self.assertEqual(go_source(rst_gen.synthesize(grid, NILABLE)), "Grid{}")
        self.assertIs(rst_gen.synthesize(set_type, NILABLE), rst_gen.NIL)

    def test_named_basic_resets_like_underlying(self) -> None:
        self.assertEqual(rst_gen.synthesize(Named("ID", underlying=INT), NILABLE), Literal("0"))
        self.assertEqual(
            rst_gen.synthesize(Named("Ratio", underlying=Basic("float", "float32")), NILABLE), NoReset("float")
        )

    def test_named_pointer_keeps_pointee(self) -> None:
        node = Named("Node", underlying=StructType())
        ref = Named("NodeRef", underlying=Pointer(node))
        expr = rst_gen.synthesize(ref, NONIL)
        self.assertIs(expr.of_type, node)
        self.assertEqual(go_source(expr), "&Node{}")

    def test_unsupported_categories_raise(self) -> None:
        for typ, category in (
            (StructType(), "struct"),
            (InterfaceType(), "interface"),
            (FuncType(), "func"),
            (Named("Inner", underlying=StructType()), "struct"),
            (Named("error", underlying=InterfaceType()), "interface"),
        ):
            with self.assertRaises(rst_gen.UnsupportedType) as ctx:
                rst_gen.synthesize(typ, NILABLE)
            self.assertEqual(ctx.exception.category, category)

    def test_nested_unsupported_type_raises_only_when_constructed(self) -> None:
        with self.assertRaises(rst_gen.UnsupportedType) as ctx:
            rst_gen.synthesize(Slice(InterfaceType()), NONIL)
        self.assertEqual(ctx.exception.category, "interface")
        self.assertIs(rst_gen.synthesize(Slice(InterfaceType()), NILABLE), rst_gen.NIL)


class RenderTypeTests(unittest.TestCase):
    def test_qualified_named_type(self) -> None:
        expr = rst_gen.render_type(Named("Time", scope="time", package="time"))
        self.assertEqual(expr.text, "time.Time")
        self.assertEqual(expr.imports, frozenset({("time", "time")}))

    def test_nested_composites(self) -> None:
        message = Named("Message", scope="example.com/pb", package="pb")
        expr = rst_gen.render_type(Map(STRING, Slice(Pointer(message))))
        self.assertEqual(expr.text, "map[string][]*pb.Message")
        self.assertEqual(expr.imports, frozenset({("pb", "example.com/pb")}))
        self.assertEqual(rst_gen.render_type(Array(Channel(INT), 2)).text, "[2]chan int")
        self.assertEqual(rst_gen.render_type(Pointer(Pointer(INT))).text, "**int")

    def test_generic_instance(self) -> None:
        self.assertEqual(rst_gen.render_type(Named("List", type_args=(STRING, INT))).text, "List[string, int]")

    def test_unsupported_type_raises(self) -> None:
        with self.assertRaises(rst_gen.UnsupportedType):
            rst_gen.render_type(Map(STRING, StructType()))


class FieldScannerTests(unittest.TestCase):
    def test_skips_embedded_and_unresolved_fields_in_order(self) -> None:
        base = Named("Base", underlying=StructType())
        fields = [
            StructField("A", INT),
            StructField("Base", base, embedded=True),
            StructField("X", None),
            StructField("C", Pointer(INT), tag='reset:"nonil"'),
            StructField("D", Slice(INT), tag='json:"d" reset:"nil"'),
        ]
        specs, omitted = rst_gen.scan_fields(fields)
        self.assertEqual([s.name for s in specs], ["A", "C", "D"])
        self.assertEqual([s.policy for s in specs], [NILABLE, NONIL, NILABLE])
        self.assertEqual(
            [(o.name, o.reason) for o in omitted],
            [("Base", rst_gen.OMIT_EMBEDDED), ("X", rst_gen.OMIT_UNRESOLVED)],
        )

    def test_blank_fields_are_omitted(self) -> None:
        fields = [StructField("_", INT), StructField("A", INT), StructField("_", Slice(INT))]
        specs, omitted = rst_gen.scan_fields(fields)
        self.assertEqual([s.name for s in specs], ["A"])
        self.assertEqual([o.reason for o in omitted], [rst_gen.OMIT_BLANK, rst_gen.OMIT_BLANK])


class TagLookupTests(unittest.TestCase):
    def test_lookup(self) -> None:
        tag = 'json:"a,omitempty" reset:"nonil"'
        self.assertEqual(rst_gen.struct_tag_lookup(tag, "reset"), "nonil")
        self.assertEqual(rst_gen.struct_tag_lookup(tag, "json"), "a,omitempty")
        self.assertIsNone(rst_gen.struct_tag_lookup(tag, "yaml"))
        self.assertIsNone(rst_gen.struct_tag_lookup("", "reset"))

    def test_malformed_and_escaped_tags(self) -> None:
        self.assertIsNone(rst_gen.struct_tag_lookup("reset:nonil", "reset"))
        self.assertIsNone(rst_gen.struct_tag_lookup('reset: "nonil"', "reset"))
        self.assertEqual(rst_gen.struct_tag_lookup(r'reset:"no\"nil"', "reset"), 'no"nil')

    def test_policy(self) -> None:
        self.assertEqual(rst_gen.parse_policy('reset:"nonil"'), NONIL)
        self.assertEqual(rst_gen.parse_policy('reset:"nonil "'), NILABLE)
        self.assertEqual(rst_gen.parse_policy('other:"nonil"'), NILABLE)
        self.assertEqual(rst_gen.parse_policy(""), NILABLE)


class EmitterTests(unittest.TestCase):
    def test_assignments_follow_field_order(self) -> None:
        methods = rst_gen.emit_reset_method((), "Pair", [StructField("A", INT), StructField("B", STRING)])
        self.assertEqual(len(methods), 1)
        method = methods[0]
        self.assertEqual(method.receiver, "P")
        self.assertEqual(method.assignments, (("A", Literal("0")), ("B", Literal('""'))))

    def test_unresolved_field_dropped_without_error(self) -> None:
        methods = rst_gen.emit_reset_method((), "T", [StructField("A", INT), StructField("X", None)])
        self.assertEqual(methods[0].assignments, (("A", Literal("0")),))
        self.assertEqual([(o.name, o.reason) for o in methods[0].omitted], [("X", rst_gen.OMIT_UNRESOLVED)])

    def test_no_reset_field_reported_separately(self) -> None:
        methods = rst_gen.emit_reset_method(
            (), "T", [StructField("F", Basic("float", "float64"), index=4), StructField("X", None, index=9)]
        )
        self.assertEqual(methods[0].assignments, ())
        self.assertEqual(
            [(o.name, o.reason, o.detail) for o in methods[0].omitted],
            [("F", rst_gen.OMIT_NO_RESET, "float"), ("X", rst_gen.OMIT_UNRESOLVED, "")],
        )

    def test_accumulator_is_extended_not_mutated(self) -> None:
        first = rst_gen.emit_reset_method((), "A", [StructField("X", INT)])
        second = rst_gen.emit_reset_method(first, "B", [StructField("Y", STRING)])
        self.assertEqual(len(first), 1)
        self.assertEqual([m.struct_name for m in second], ["A", "B"])

    def test_unsupported_field_names_struct_and_field(self) -> None:
        inner = Named("Inner", underlying=StructType())
        with self.assertRaises(rst_gen.UnsupportedType) as ctx:
            rst_gen.emit_reset_method((), "Outer", [StructField("A", INT), StructField("Inner", inner, index=12)])
        self.assertEqual(str(ctx.exception), "Outer.Inner: unsupported type struct")
        self.assertEqual(ctx.exception.index, 12)


class ResolverTests(unittest.TestCase):
    def test_forward_and_self_references(self) -> None:
        package = load(
            """
            package p

            type List struct {
              Head *Node `reset:"nonil"`
            }

            type Node struct {
              Next *Node
              Val  Value
            }

            type Value int
            """
        )
        node = package.types["Node"]
        fields = node.underlying.fields
        self.assertIs(fields[0].type.elem, node)
        self.assertIs(fields[1].type, package.types["Value"])
        self.assertEqual(package.types["Value"].underlying, INT)

        output = rst_gen.render_file(package.name, rst_gen.generate(package))
        self.assertIn("\tL.Head = &Node{}\n", output)
        self.assertIn("\tN.Next = nil\n\tN.Val = 0\n", output)

    def test_defined_type_takes_shape_of_named_struct(self) -> None:
        package = load(
            """
            package p

            type Base struct {
              A int
            }

            type Derived Base
            """
        )
        self.assertEqual([d.name for d in rst_gen.select_structs(package)], ["Base", "Derived"])
        output = rst_gen.render_file(package.name, rst_gen.generate(package, ["Derived"]))
        self.assertIn("func (D *Derived) Reset() {\n\tD.A = 0\n}\n", output)

    def test_alias_resolves_to_target(self) -> None:
        output = generated(
            """
            package p

            type Frame struct {
              B Bytes `reset:"nonil"`
            }

            type Bytes = []byte
            """
        )
        self.assertIn("\tF.B = make([]byte, 0)\n", output)
        self.assertNotIn("Bytes) Reset", output)

    def test_imported_types(self) -> None:
        output = generated(
            """
            package p

            import "time"

            type Clock struct {
              D time.Duration
              P *time.Time `reset:"nonil"`
              L []time.Duration `reset:"nonil"`
            }
            """
        )
        expected = (
            "// Code generated by rst_gen. DO NOT EDIT.\n"
            "\n"
            "package p\n"
            "\n"
            'import "time"\n'
            "\n"
            "func (C *Clock) Reset() {\n"
            "\tC.P = new(time.Time)\n"
            "\tC.L = make([]time.Duration, 0)\n"
            "}\n"
        )
        self.assertEqual(output, expected)

    def test_versioned_import_answers_to_both_names(self) -> None:
        output = generated(
            """
            package p

            import "k8s.io/api/core/v1"

            type Spec struct {
              P *v1.Pod `reset:"nonil"`
              M map[string]v1.Pod `reset:"nonil"`
            }
            """
        )
        expected = (
            "// Code generated by rst_gen. DO NOT EDIT.\n"
            "\n"
            "package p\n"
            "\n"
            'import v1 "k8s.io/api/core/v1"\n'
            "\n"
            "func (S *Spec) Reset() {\n"
            "\tS.P = new(v1.Pod)\n"
            "\tS.M = make(map[string]v1.Pod)\n"
            "}\n"
        )
        self.assertEqual(output, expected)

        output = generated(
            """
            package p

            import "k8s.io/api/core/v1"

            type Spec struct {
              P *core.Pod `reset:"nonil"`
            }
            """
        )
        self.assertIn('import "k8s.io/api/core/v1"\n', output)
        self.assertIn("\tS.P = new(core.Pod)\n", output)

    def test_embedded_generic_instance(self) -> None:
        package = load(
            """
            package p

            type List[T any] struct {
              items []T
            }

            type Stack struct {
              List[int]
              A    int
              B    [4]int
              _    int
            }
            """
        )
        fields = package.types["Stack"].underlying.fields
        self.assertEqual([(f.name, f.embedded) for f in fields], [("List", True), ("A", False), ("B", False), ("_", False)])
        output = rst_gen.render_file(package.name, rst_gen.generate(package))
        self.assertIn("func (S *Stack) Reset() {\n\tS.A = 0\n\tS.B = [4]int{}\n}\n", output)
        self.assertNotIn("S._", output)

    def test_array_length_from_constant(self) -> None:
        package = load(
            """
            package p

            const Size = 8

            type Buf struct {
              Data [Size]byte
              Wide [0x10]int
            }
            """
        )
        fields = package.types["Buf"].underlying.fields
        self.assertEqual(fields[0].type, Array(Basic("integer", "byte"), 8))
        self.assertEqual(fields[1].type.length, 16)

    def test_channel_directions_parse(self) -> None:
        output = generated(
            """
            package p

            type Pipe struct {
              In  <-chan int `reset:"nonil"`
              Out chan<- string `reset:"nonil"`
              Raw chan []byte
            }
            """
        )
        self.assertIn("\tP.In = make(chan int)\n\tP.Out = make(chan string)\n\tP.Raw = nil\n", output)

    def test_declarations_other_than_types_are_skipped(self) -> None:
        output = generated(
            """
            // Package p does things.
            package p

            import (
              "fmt"
              _ "embed"
            )

            const (
              KindA = iota
              KindB
            )

            var registry = map[string]int{"a": 1}

            /* block
            comment */
            type (
              Empty struct{}
              Counter struct {
                Hits, Misses uint64
                label        string // trailing comment
              }
            )

            func (c *Counter) String() string {
              return fmt.Sprintf("%d/%d", c.Hits, c.Misses)
            }
            """
        )
        expected = (
            "// Code generated by rst_gen. DO NOT EDIT.\n"
            "\n"
            "package p\n"
            "\n"
            "func (E *Empty) Reset() {}\n"
            "\n"
            "func (C *Counter) Reset() {\n"
            "\tC.Hits = 0\n"
            "\tC.Misses = 0\n"
            '\tC.label = ""\n'
            "}\n"
        )
        self.assertEqual(output, expected)

    def test_func_and_interface_fields_are_unsupported(self) -> None:
        for field, category in (("F func(int) error", "func"), ("V interface{}", "interface"), ("E error", "interface")):
            package = load(f"package p\n\ntype T struct {{\n  {field}\n}}\n")
            with self.assertRaises(rst_gen.UnsupportedType) as ctx:
                rst_gen.generate(package)
            self.assertEqual(ctx.exception.category, category)

    def test_recursive_type_rejected(self) -> None:
        with self.assertRaises(rst_gen.ResolutionError) as ctx:
            load("package p\n\ntype A B\n\ntype B A\n")
        self.assertIn("invalid recursive type", str(ctx.exception))

    def test_undefined_identifier_rejected(self) -> None:
        with self.assertRaises(rst_gen.ResolutionError) as ctx:
            load("package p\n\ntype T struct {\n  A Missing\n}\n")
        self.assertEqual(str(ctx.exception), "undefined: Missing")
        self.assertEqual(ctx.exception.path, pathlib.Path("input.go"))

    def test_unknown_import_qualifier_rejected(self) -> None:
        with self.assertRaises(rst_gen.ResolutionError) as ctx:
            load("package p\n\ntype T struct {\n  A json.Number\n}\n")
        self.assertEqual(str(ctx.exception), "undefined: json")

    def test_syntax_error_is_parse_error(self) -> None:
        with self.assertRaises(rst_gen.ParseError) as ctx:
            load("package p\n\ntype T struct {\n  A int\n")
        self.assertEqual(ctx.exception.path, pathlib.Path("input.go"))

    def test_package_mismatch_rejected(self) -> None:
        a = rst_gen.parse_source(pathlib.Path("a.go"), "package a\n")
        b = rst_gen.parse_source(pathlib.Path("b.go"), "package b\n")
        with self.assertRaises(rst_gen.ResolutionError):
            rst_gen.resolve_package([a, b])

    def test_selection_errors(self) -> None:
        package = load("package p\n\ntype ID int\n\ntype S struct {\n  A int\n}\n")
        with self.assertRaises(rst_gen.NotAStruct):
            rst_gen.select_structs(package, ["ID"])
        with self.assertRaises(rst_gen.ResolutionError):
            rst_gen.select_structs(package, ["Nope"])
        self.assertEqual([d.name for d in rst_gen.select_structs(package, ["S", "S"])], ["S"])


if __name__ == "__main__":
    unittest.main()
